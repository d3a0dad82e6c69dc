"""
FastAPI Application Entry Point.

This is the main application file for the fleetwatch service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fleetwatch.app.core.config import settings
from fleetwatch.app.api.v1.router import router as api_v1_router
from fleetwatch.app.core.container import build_services
from fleetwatch.app.core.observability import ObservabilityMiddleware, configure_logging
from fleetwatch.app.core.redis_client import redis_client
from fleetwatch.app.db.session import engine, Base, AsyncSessionLocal
from fleetwatch.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from fleetwatch.app.models.driver_state import DriverState
from fleetwatch.app.models.route import Route, RouteStop
from fleetwatch.app.models.queue_message import QueueMessage
from fleetwatch.app.models.dlq import DeadLetterQueue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Wires the services and starts the queue worker if enabled.
    3. Stops the worker and closes clients on shutdown.
    """
    configure_logging(settings.debug)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    services = build_services(AsyncSessionLocal, redis_client)
    app.state.services = services

    if settings.worker_enabled:
        services.start_worker()

    yield

    await services.aclose()
    await redis_client.aclose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="GPS ingestion and geofence arrival/departure detection",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "ok": True,
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
