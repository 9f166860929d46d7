from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class TooManyRequestsError(AppError):
    def __init__(self, message: str = "Too many requests", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="TOO_MANY_REQUESTS",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details,
        )


# Document request lifecycle


class InvalidStateTransition(AppError):
    """Illegal status change; nothing was written."""

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move request from {current} to {target}",
            code="INVALID_STATE_TRANSITION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"current_status": current, "target_status": target},
        )


class DuplicatePayment(AppError):
    """A second payment tried to settle a request that is already paid."""

    def __init__(self, request_number: str, payment_id: str | None = None):
        super().__init__(
            f"Request {request_number} is already paid",
            code="DUPLICATE_PAYMENT",
            status_code=status.HTTP_409_CONFLICT,
            details={"request_number": request_number, "payment_id": payment_id},
        )


class PaymentDeadlineExceeded(AppError):
    def __init__(self, request_number: str, deadline: Any = None):
        super().__init__(
            f"Payment deadline for request {request_number} has passed",
            code="PAYMENT_DEADLINE_EXCEEDED",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "request_number": request_number,
                "payment_deadline": deadline.isoformat() if hasattr(deadline, "isoformat") else deadline,
            },
        )


# Webhook intake: recorded on the event row, never rendered to the provider


class UnknownWebhookEvent(AppError):
    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(
            f"Unhandled webhook event type: {event_type}",
            code="UNKNOWN_WEBHOOK_EVENT",
            status_code=status.HTTP_200_OK,
            details={"event_type": event_type},
        )


class WebhookProcessingFailure(AppError):
    """Transient failure resolving a known event; the event stays retriable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="WEBHOOK_PROCESSING_FAILED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_errors(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


def jsonable_errors(errors: Any) -> Any:
    from fastapi.encoders import jsonable_encoder
    return jsonable_encoder(errors, custom_encoder={Exception: str})


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from registrar.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
