"""Unauthenticated operational endpoints."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from ..database import get_db
from .health import UNHEALTHY, overall_status, probe_backlog, probe_broker, probe_database

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """Report dependency status; 503 only when the database is unreachable."""
    probes = {
        "database": probe_database(db),
        "redis": probe_broker(),
        "categorization_backlog": probe_backlog(db),
    }
    status = overall_status(probes)
    return JSONResponse(
        status_code=503 if status == UNHEALTHY else 200,
        content={
            "status": status,
            "components": {name: probe.as_dict() for name, probe in probes.items()},
        },
    )
