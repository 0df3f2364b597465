"""
FastAPI application for the Mailing List service.

Provides a JSON API for:
- Subscribing, confirming and opting out email addresses
- Paginated reads of active subscribers
- Health monitoring and statistics
"""

import argparse
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mailinglist.config import ServiceConfig, get_settings
from mailinglist.observability.health import (
    LivenessResponse,
    ReadinessResponse,
    get_health_checker,
)
from mailinglist.observability.logging import configure_logging, get_logger
from mailinglist.observability.logging_middleware import (
    SlowRequestLogger,
    StructuredLoggingMiddleware,
)
from mailinglist.routers import emails_router
from mailinglist.routers.emails import get_email_db
from mailinglist.storage.database import (
    DuplicateEmailError,
    EmailDatabase,
    StorageError,
)

settings = get_settings()
configure_logging(
    log_level=settings.logging.level,
    json_output=settings.logging.json_output,
    colorized=settings.logging.colorized,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the subscriber database and creates the schema on startup, closes
    the connection on shutdown. A schema failure aborts startup.
    """
    settings = get_settings()

    logger.info("=== Mailing List Service Starting ===")
    logger.info("Using database", db_path=settings.database.db)

    email_db = EmailDatabase(db_path=settings.database.db)
    try:
        await email_db.initialize()
    except StorageError:
        logger.error("Startup failed", exc_info=True)
        email_db.close()
        raise

    app.state.email_db = email_db
    logger.info("=== Service Ready ===")

    try:
        yield  # Application runs here
    finally:
        logger.info("=== Shutting down ===")
        app.state.email_db = None
        email_db.close()
        logger.info("=== Shutdown complete ===")


app = FastAPI(
    title="Mailing List API",
    description="Mailing list subscriber store with soft-delete opt-out",
    version=settings.logging.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Processed in reverse order of registration:
# SlowRequestLogger runs inside StructuredLoggingMiddleware's request context.
app.add_middleware(
    SlowRequestLogger,
    warning_threshold_ms=settings.logging.slow_request_warning_ms,
    error_threshold_ms=settings.logging.slow_request_error_ms,
)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(emails_router)


@app.exception_handler(DuplicateEmailError)
async def duplicate_email_handler(request: Request, exc: DuplicateEmailError):
    """Creating an address that already exists means it is already subscribed."""
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Email is already subscribed"},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """Handle database failures."""
    logger.error(
        "Storage error occurred",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Subscriber database error"},
    )


@app.get(
    "/health/liveness",
    response_model=LivenessResponse,
    tags=["Health"],
    summary="Liveness probe",
)
async def liveness_probe():
    """Always returns 200 while the process is serving requests."""
    return await get_health_checker().check_liveness()


@app.get(
    "/health/readiness",
    response_model=ReadinessResponse,
    tags=["Health"],
    summary="Readiness probe",
    responses={
        200: {"description": "Service is ready"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_probe(request: Request, response: Response):
    """
    Readiness probe.

    Returns:
        HTTP 200: Subscriber database answers queries
        HTTP 503: Database not opened or not responding
    """
    email_db = getattr(request.app.state, "email_db", None)
    readiness = await get_health_checker().check_readiness(email_db)

    if not readiness.ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return readiness


class StatsResponse(BaseModel):
    """Subscriber counts."""

    total: int
    active: int
    opted_out: int
    confirmed: int


@app.get("/stats", response_model=StatsResponse, tags=["System"])
async def get_stats(db: EmailDatabase = Depends(get_email_db)) -> StatsResponse:
    """Subscriber counts by state."""
    return StatsResponse(**await db.get_stats())


@app.get("/", tags=["System"])
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "service": "Mailing List API",
        "version": settings.logging.service_version,
        "docs": "/docs",
        "health": "/health/readiness",
        "emails": "/api/v1/emails",
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Command-line overrides for MAILINGLIST_DB and MAILINGLIST_BIND_JSON."""
    parser = argparse.ArgumentParser(description="Mailing list JSON API server")
    parser.add_argument(
        "--db-path",
        default=None,
        help=f"Path to SQLite database file (default: {settings.database.db})",
    )
    parser.add_argument(
        "--bind-json",
        default=None,
        help=f"Listen address for the JSON API (default: {settings.service.bind_json})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Minimum log level (default: {settings.logging.level})",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    """Console entry point: apply CLI overrides and serve with uvicorn."""
    import uvicorn

    args = parse_args(argv)
    current = get_settings()

    if args.db_path:
        current.database.db = args.db_path
    if args.bind_json:
        current.service = ServiceConfig(bind_json=args.bind_json)
    if args.log_level:
        current.logging.level = args.log_level
        configure_logging(
            log_level=args.log_level,
            json_output=current.logging.json_output,
            colorized=current.logging.colorized,
        )
        # basicConfig is a no-op once handlers exist
        logging.getLogger().setLevel(args.log_level)

    logger.info("Starting JSON API server", bind=current.service.bind_json)
    uvicorn.run(
        app,
        host=current.service.host,
        port=current.service.port,
        log_level=current.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
