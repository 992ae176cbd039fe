"""Dependency probes behind GET /health.

The database is the only hard dependency. The Celery broker and the
categorization backlog are reported but never make the service unhealthy:
without a broker the API still answers suggestions, feedback and rule
edits; only background batches stall.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Dict, Optional

import redis
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Transaction
from ..models.transaction import CategorizationStatus

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


@dataclass
class Probe:
    status: str
    message: Optional[str] = None
    latency_ms: Optional[float] = None
    required: bool = True

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("required")
        return data


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def probe_database(db: Session) -> Probe:
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database probe failed: {e}")
        return Probe(UNHEALTHY, message=type(e).__name__)
    return Probe(HEALTHY, latency_ms=_elapsed_ms(started))


def probe_broker(url: Optional[str] = None) -> Probe:
    started = time.perf_counter()
    try:
        redis.from_url(url or settings.REDIS_URL, socket_timeout=2).ping()
    except redis.RedisError as e:
        logger.warning(f"Broker probe failed: {e}")
        return Probe(UNHEALTHY, message=type(e).__name__, required=False)
    return Probe(HEALTHY, latency_ms=_elapsed_ms(started), required=False)


def probe_backlog(db: Session) -> Probe:
    """Count transactions waiting for (or stuck in) categorization."""
    waiting = (CategorizationStatus.PENDING.value, CategorizationStatus.PROCESSING.value)
    try:
        count = db.scalar(
            select(func.count(Transaction.id)).where(Transaction.categorization_status.in_(waiting))
        )
    except SQLAlchemyError as e:
        logger.warning(f"Backlog probe failed: {e}")
        return Probe(UNHEALTHY, message=type(e).__name__, required=False)
    return Probe(HEALTHY, message=f"{count} transactions awaiting categorization", required=False)


def overall_status(probes: Dict[str, Probe]) -> str:
    if any(p.required and p.status != HEALTHY for p in probes.values()):
        return UNHEALTHY
    if any(p.status != HEALTHY for p in probes.values()):
        return DEGRADED
    return HEALTHY
