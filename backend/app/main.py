"""
FastAPI Application Entry Point.

This is the main application file for the Shipment Tracking Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.dependencies import build_sync_job
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import redis_client
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.services.scheduler import ShipmentSyncScheduler
from backend.app.services.shipment_side_effects import build_default_dispatcher, close_dispatcher
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_sync_run import ShipmentSyncRun, ShipmentSyncSkip

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the side-effect dispatcher and, if enabled, starts the
       shipment sync scheduler.
    3. Stops the scheduler and closes collaborator clients on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.dispatcher = build_default_dispatcher()
    scheduler = ShipmentSyncScheduler(
        job_factory=lambda: build_sync_job(app.state.dispatcher, redis_client),
    )
    if settings.shipment_sync_enabled:
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    scheduler.shutdown()
    await close_dispatcher(app.state.dispatcher)
    await redis_client.aclose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Shipment tracking and courier reconciliation backend",
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
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "shipment_sync_enabled": settings.shipment_sync_enabled,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Shipment Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
    }
