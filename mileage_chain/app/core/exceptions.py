"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("mileage")


class AppException(Exception):
    """Base application exception."""

    classification = "rejected"

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    classification = "not_found"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised when a bearer token cannot be verified or lacks required claims."""

    def __init__(self, message: str = "Authentication failed", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details
        )


# Mileage chain invariants

class HardInvariantViolation(AppException):
    """
    A write that would break a hard chain invariant.

    The write is rejected outright and never silently corrected.
    """

    classification = "invariant_violation"

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
        details: Dict[str, Any] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class NonPositiveDistanceError(HardInvariantViolation):
    """Raised when end_km is not strictly greater than start_km."""

    classification = "non_positive_distance"

    def __init__(self, trip_label: str, start_km: int, end_km: int):
        super().__init__(
            message=(
                f"Invalid odometer reading for trip {trip_label}: End KM ({end_km}) must be "
                f"greater than Start KM ({start_km}). Distance cannot be zero or negative."
            ),
            error_code="ERR_CHAIN_001",
            details={"trip": trip_label, "start_km": start_km, "end_km": end_km}
        )


class OdometerRegressionError(HardInvariantViolation):
    """Raised when a trip starts below its predecessor's end reading."""

    classification = "negative"

    def __init__(
        self,
        trip_label: str,
        start_km: int,
        predecessor_id: int,
        predecessor_serial: str | None,
        predecessor_end_km: int,
        predecessor_end_date: str
    ):
        gap_km = start_km - predecessor_end_km
        super().__init__(
            message=(
                f"ODOMETER CONTINUITY VIOLATION! Trip {trip_label}: Start KM {start_km} cannot be "
                f"less than previous trip end KM {predecessor_end_km}. Previous trip "
                f"{predecessor_serial or predecessor_id} ended on {predecessor_end_date}. "
                f"Gap: {gap_km} km (negative - odometer went backwards). "
                "Correct the odometer readings to maintain continuity."
            ),
            error_code="ERR_CHAIN_002",
            details={
                "trip": trip_label,
                "start_km": start_km,
                "predecessor_id": predecessor_id,
                "predecessor_serial": predecessor_serial,
                "predecessor_end_km": predecessor_end_km,
                "predecessor_end_date": predecessor_end_date,
                "gap_km": gap_km,
            }
        )


class SuccessorConflictError(HardInvariantViolation):
    """Raised when a direct end_km edit would overrun the next trip's start."""

    classification = "successor_conflict"

    def __init__(self, trip_label: str, new_end_km: int, successor_id: int, successor_serial: str | None, successor_start_km: int):
        super().__init__(
            message=(
                f"ODOMETER CONTINUITY VIOLATION! Updating trip {trip_label} end KM to {new_end_km} "
                f"would break continuity. Next trip {successor_serial or successor_id} starts at "
                f"{successor_start_km} km. Use cascade correction to update all subsequent trips."
            ),
            error_code="ERR_CHAIN_003",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "trip": trip_label,
                "new_end_km": new_end_km,
                "successor_id": successor_id,
                "successor_serial": successor_serial,
                "successor_start_km": successor_start_km,
                "remediation": "cascade_correction",
            }
        )


class InvalidTripDatesError(AppException):
    """Raised when an update leaves a trip ending before it starts."""

    classification = "invalid_dates"

    def __init__(self, trip_label: str, start_date: str, end_date: str):
        super().__init__(
            message=f"Trip {trip_label} cannot end ({end_date}) before it starts ({start_date})",
            error_code="ERR_TRIP_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"trip": trip_label, "trip_start_date": start_date, "trip_end_date": end_date}
        )


class ChainLockTimeoutError(AppException):
    """Raised when a vehicle's chain lock cannot be acquired in time."""

    classification = "chain_busy"

    def __init__(self, owner_id: int, vehicle_id: int, waited_seconds: float):
        super().__init__(
            message=f"Vehicle {vehicle_id} chain is busy, retry the write",
            error_code="ERR_CHAIN_LOCK_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"owner_id": owner_id, "vehicle_id": vehicle_id, "waited_seconds": waited_seconds}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
