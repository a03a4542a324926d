"""
Irrigation Pro API
==================

FastAPI application shell around the data-access layer: observability
bootstrap, database lifecycle, error handling and health endpoints.
Feature routers mount onto the app returned by ``create_app``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from irrigation_core.database import Database, create_database
from irrigation_core.observability import configure_logging, init_metrics, init_tracing

from .shared.middleware import TraceMiddleware, register_error_handlers
from .shared.routers import health_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "irrigation-pro-backend"
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "3001"))


# =============================================================================
# OBSERVABILITY INITIALIZATION
# =============================================================================

def init_observability():
    """Initialize observability components (tracing, metrics, logging)."""
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_enabled = os.getenv("OTEL_ENABLED", "false").lower() == "true"
    console_export = os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_structured = os.getenv("LOG_STRUCTURED", "true").lower() == "true"

    # Configure structured logging first
    configure_logging(
        level=log_level,
        structured=log_structured,
        service_name=SERVICE_NAME
    )

    if otel_enabled or otlp_endpoint:
        init_tracing(
            service_name=SERVICE_NAME,
            service_version=os.getenv("APP_VERSION", "1.0.0"),
            otlp_endpoint=otlp_endpoint,
            console_export=console_export
        )
        init_metrics(
            service_name=SERVICE_NAME,
            otlp_endpoint=otlp_endpoint,
            console_export=console_export
        )
        logger.info("OpenTelemetry observability initialized")


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(database: Optional[Database] = None, observability: bool = True) -> FastAPI:
    """
    Build the API application.

    ``database`` defaults to the backend selected from the environment.
    It is connected during startup and drained on shutdown.
    """
    database = database or create_database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        if observability:
            init_observability()

        await database.connect()
        try:
            database.start_monitoring()
            logger.info("Database ready: %r", database)
            yield
        finally:
            await database.close()

    app = FastAPI(
        title="Irrigation Pro API",
        description="Multi-tenant irrigation service CRM backend",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.database = database

    register_error_handlers(app)
    app.add_middleware(TraceMiddleware)
    app.include_router(health_router)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "irrigation_api.main:create_app",
        factory=True,
        host=API_HOST,
        port=API_PORT,
    )
