"""ASGI entrypoint for the LedgerFlow API.

    uvicorn ledgerflow.main:app

Routers map their own domain errors to 404/409/422; the handlers registered
here only shape request validation failures and anything that escapes.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .categorization.router import router as categorization_router
from .categorization.router import rules_router
from .config import settings
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.request_id import REQUEST_ID_HEADER
from .observability.router import router as observability_router
from .reconciliation.router import router as reconciliation_router

API_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"LedgerFlow API {API_VERSION} starting ({settings.ENVIRONMENT}); "
        f"embeddings={'on' if settings.OPENAI_API_KEY else 'off'}, "
        f"eager categorization={settings.CATEGORIZATION_EAGER}"
    )
    yield
    logger.info("LedgerFlow API stopped")


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Rejected {request.method} {request.url.path}: invalid request")
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "validation_error",
        "Request validation failed",
        details=jsonable_encoder(exc.errors()),
    )


async def _on_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "database_error", "A database error occurred")


async def _on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "An unexpected error occurred")


def create_app() -> FastAPI:
    """Build the API: routers, request correlation, CORS and error shaping."""
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    show_docs = settings.ENVIRONMENT != "production"
    application = FastAPI(
        title="LedgerFlow API",
        description="Transaction categorization and invoice reconciliation",
        version=API_VERSION,
        docs_url="/docs" if show_docs else None,
        redoc_url=None,
        openapi_url="/openapi.json" if show_docs else None,
        lifespan=lifespan,
    )

    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    application.add_exception_handler(RequestValidationError, _on_validation_error)
    application.add_exception_handler(SQLAlchemyError, _on_database_error)
    application.add_exception_handler(Exception, _on_unexpected_error)

    for router in (observability_router, categorization_router, rules_router, reconciliation_router):
        application.include_router(router)

    return application


app = create_app()
