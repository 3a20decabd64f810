"""
Error hierarchy for the entitlement engine.

Infrastructure failures and bad input are exceptions; policy outcomes
(Deny, AlreadyProcessed, InvalidSignature) are returned as values by the
services and never raised.

HTTP mapping:
- 400: ValidationError, PaymentMismatchError
- 401: AuthenticationError
- 404: NotFoundError, ContentNotFoundError, PaymentNotFoundError, PlanNotFoundError
- 409: ConflictError, SubscriptionLimitError
- 503: ServiceUnavailableError, TransientStoreError

Stack traces are never returned to clients.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with a consistent response shape."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, code: str = "VALIDATION_ERROR"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: Optional[str] = None, code: str = "NOT_FOUND"):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(AppError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, code: str = "CONFLICT"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ServiceUnavailableError(AppError):
    def __init__(self, message: str = "Service temporarily unavailable", code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


# --- Domain errors ---


class ContentNotFoundError(NotFoundError):
    """Access was requested for content the content store does not know."""

    def __init__(self, content_type: str, content_id: str):
        self.content_type = content_type
        self.content_id = content_id
        super().__init__(resource=content_type, identifier=content_id, code="CONTENT_NOT_FOUND")


class TransientStoreError(ServiceUnavailableError):
    """
    Database or Redis unavailable.

    Callers retry; this is never interpreted as Allow or Deny.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(
            message=f"Storage unavailable during {operation}",
            code="TRANSIENT_STORE_ERROR",
        )


class PaymentNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(resource="Payment", identifier=order_id, code="PAYMENT_NOT_FOUND")


class PaymentMismatchError(ValidationError):
    """Confirmation names a plan or user other than the one the order was created for."""

    def __init__(self, order_id: str, field: str):
        self.order_id = order_id
        self.field = field
        super().__init__(
            message=f"Payment confirmation does not match order on '{field}'",
            details={"order_id": order_id, "field": field},
            code="PAYMENT_MISMATCH",
        )


class PlanNotFoundError(NotFoundError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(resource="Subscription plan", identifier=plan_id, code="PLAN_NOT_FOUND")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(resource="User", identifier=user_id, code="USER_NOT_FOUND")


class SubscriptionLimitError(ConflictError):
    def __init__(self, active_count: int, limit: int):
        super().__init__(
            message=(
                f"You already have {active_count} active subscriptions. "
                "You cannot purchase another one at this time."
            ),
            details={"active_subscriptions": active_count, "limit": limit},
            code="SUBSCRIPTION_LIMIT_REACHED",
        )


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Correlation ID from the X-Correlation-ID header, request state, or a new one."""
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return generate_correlation_id()


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns every exception into the standard error shape with a correlation ID."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except HTTPException as e:
            logger.warning(
                "HTTP exception",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": e.status_code,
                    "path": request.url.path,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content={"error": {"code": "HTTP_ERROR", "message": str(e.detail), "details": {}}},
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )
