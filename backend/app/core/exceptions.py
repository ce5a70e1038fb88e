"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes for the shipment domain and global
exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


# Shipment domain

class ShipmentNotFoundError(AppException):
    """Raised when a shipment does not exist."""

    def __init__(self, shipment_id: Any):
        super().__init__(
            message=f"Shipment with ID {shipment_id} not found",
            error_code="ERR_SHIP_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"shipment_id": shipment_id}
        )


class TransitionError(AppException):
    """Raised when a status change is not a legal edge of the shipment graph."""

    def __init__(self, current, target, shipment_id: Any = None):
        self.current = current
        self.target = target
        current_name = current.value if current is not None else None
        super().__init__(
            message=f"Cannot transition shipment from {current_name} to {target.value}",
            error_code="ERR_SHIP_002",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "shipment_id": shipment_id,
                "current_status": current_name,
                "target_status": target.value,
            }
        )


class TrackingNumberInvalidError(AppException):
    """Raised when a shipment has no usable tracking number."""

    def __init__(self, tracking_number: Optional[str] = None):
        super().__init__(
            message="Tracking number is missing or blank",
            error_code="ERR_SHIP_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"tracking_number": tracking_number}
        )


class TrackingInfoRequiredError(AppException):
    """Raised when courier or tracking number is missing from a command."""

    def __init__(self):
        super().__init__(
            message="Both courier and tracking number are required",
            error_code="ERR_SHIP_004",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class ShipmentAssociationError(AppException):
    """Raised when a shipment would be bound to both an order and a sale, or to neither."""

    def __init__(self, message: str = "A shipment must belong to exactly one order or sale"):
        super().__init__(
            message=message,
            error_code="ERR_SHIP_005",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class ShipmentConflictError(AppException):
    """Raised when a shipment changed underneath a pending status write."""

    def __init__(self, shipment_id: int, expected_status=None):
        self.shipment_id = shipment_id
        self.expected_status = expected_status
        expected = getattr(expected_status, "value", expected_status)
        super().__init__(
            message=f"Shipment {shipment_id} is no longer {expected}; it was updated concurrently",
            error_code="ERR_SHIP_006",
            status_code=status.HTTP_409_CONFLICT
        )


# Courier scraping (non-fatal for a sync run)

class TrackingScrapeError(AppException):
    """Base class for failures while reading a courier tracking page."""

    def __init__(
        self,
        message: str,
        tracking_number: Optional[str] = None,
        error_code: str = "ERR_SHIP_302",
        status_code: int = status.HTTP_502_BAD_GATEWAY
    ):
        self.tracking_number = tracking_number
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details={"tracking_number": tracking_number}
        )


class TrackingNetworkError(TrackingScrapeError):
    """Navigation to the tracking page failed."""


class TrackingTimeoutError(TrackingScrapeError):
    """The tracking page did not render its status table in time."""

    def __init__(self, message: str, tracking_number: Optional[str] = None):
        super().__init__(
            message=message,
            tracking_number=tracking_number,
            error_code="ERR_SHIP_304",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT
        )


class TrackingDataNotFoundError(TrackingScrapeError):
    """The courier has no tracking rows for this number yet."""

    def __init__(self, tracking_number: Optional[str] = None):
        super().__init__(
            message=f"No tracking data available for {tracking_number}",
            tracking_number=tracking_number,
            error_code="ERR_SHIP_301",
            status_code=status.HTTP_502_BAD_GATEWAY
        )


class TrackingParseError(TrackingScrapeError):
    """The status table did not have the expected shape."""

    def __init__(self, message: str, tracking_number: Optional[str] = None):
        super().__init__(
            message=message,
            tracking_number=tracking_number,
            error_code="ERR_SHIP_305",
            status_code=status.HTTP_502_BAD_GATEWAY
        )


class BrowserInitializationError(AppException):
    """The headless browser could not be started. Fatal for a sync run."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="ERR_SHIP_303",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


# Sync run control

class SyncRunInProgressError(AppException):
    """Another shipment sync run currently holds the run lock."""

    def __init__(self):
        super().__init__(
            message="A shipment sync run is already in progress",
            error_code="ERR_SHIP_401",
            status_code=status.HTTP_409_CONFLICT
        )


class SkipLimitExceededError(AppException):
    """Too many shipments failed within one sync run."""

    def __init__(self, skip_count: int, skip_limit: int):
        self.skip_count = skip_count
        self.skip_limit = skip_limit
        super().__init__(
            message=f"Skip limit exceeded: {skip_count} failures (limit {skip_limit})",
            error_code="ERR_SHIP_402",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"skip_count": skip_count, "skip_limit": skip_limit}
        )


class SyncRunNotFoundError(AppException):
    """Raised when a sync run record does not exist."""

    def __init__(self, run_id: Any):
        super().__init__(
            message=f"Sync run with ID {run_id} not found",
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"run_id": run_id}
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
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
