"""
FastAPI Application Entry Point.

This is the main application file for the Mileage Chain Integrity Engine.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mileage_chain.app.core.config import settings
from mileage_chain.app.api.v1.router import router as api_v1_router
from mileage_chain.app.core.observability import ObservabilityMiddleware
from mileage_chain.app.core.redis_client import ping_redis
from mileage_chain.app.db.session import engine, Base
from mileage_chain.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from mileage_chain.app.models.trip import Trip
from mileage_chain.app.models.trip_correction import TripCorrection  # after Trip for FK
from mileage_chain.app.models.audit_log import AuditLog


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Odometer continuity and fuel efficiency integrity for per-vehicle trip chains",
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

    Redis being down is reported but does not make the service unhealthy:
    chain locks fall back to in-process locking.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
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
        "message": "Welcome to the Mileage Chain Integrity Engine API",
        "docs": "/docs",
        "health": "/health",
    }
