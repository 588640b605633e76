"""
Engine error taxonomy and its HTTP rendering.

Every service raises one of these; the API layer renders them uniformly as
``{"error_code", "message", "details"}``.
"""

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse


class EngineError(Exception):
    """Base error for the rental engine."""

    error_code = "ERR_ENGINE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(EngineError):
    """Bad input shape or range; the caller can correct and retry."""

    error_code = "ERR_VALIDATION"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidRangeError(ValidationError):
    """Date range or rental quantity out of bounds."""

    error_code = "ERR_INVALID_RANGE"


class NotFoundError(EngineError):
    """Reservation, vehicle or upload session missing or expired."""

    error_code = "ERR_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})


class PermissionDeniedError(EngineError):
    """Actor is not the driver or host the operation requires."""

    error_code = "ERR_FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(EngineError):
    """Availability race lost or vehicle no longer free; re-list options."""

    error_code = "ERR_CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class StateError(EngineError):
    """Transition attempted from a state that forbids it."""

    error_code = "ERR_STATE"
    status_code = status.HTTP_409_CONFLICT


class PaymentError(EngineError):
    """Gateway rejection, amount mismatch or network failure."""

    error_code = "ERR_PAYMENT"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, {**(details or {}), "retryable": retryable})
        self.retryable = retryable
        if retryable:
            self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PaymentProcessingError(PaymentError):
    """Outcome unknown or still processing; the client should check payment status."""

    error_code = "ERR_PAYMENT_PROCESSING"

    def __init__(self, message: str = "Payment is processing, check payment status later",
                 details: dict[str, Any] | None = None):
        super().__init__(message, retryable=True, details=details)
        self.status_code = status.HTTP_202_ACCEPTED


async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Handler for engine exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )
