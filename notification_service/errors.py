"""
Error taxonomy and HTTP error handling.

Every error response has the same body:
    {"detail": <human readable>, "reason": <stable machine code>, "request_id": <id>}
"""

import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from notification_service.logging_utils import get_request_id

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """
    Base class for errors that map onto an HTTP response.

    When `public` is False the detail is only logged and callers get the
    generic internal error text.
    """

    reason = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "internal error"
    public = True

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class EventNotFound(ServiceError):
    reason = "event_not_found"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"event {identifier} does not exist")


class SubscriptionNotFound(ServiceError):
    reason = "subscription_not_found"
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "subscription does not exist"


class SubscriptionAlreadyExists(ServiceError):
    reason = "subscription_already_exists"
    status_code = status.HTTP_409_CONFLICT
    detail = "subscription already exists"


class SubscriberAlreadyExists(ServiceError):
    reason = "subscriber_already_exists"
    status_code = status.HTTP_409_CONFLICT
    detail = "subscriber already exists"


class InvalidPayload(ServiceError):
    reason = "invalid_payload"
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "invalid request payload"


class InvalidPhoneNumber(InvalidPayload):
    reason = "invalid_phone_number"
    detail = "invalid phone number"


class TemplateUnavailable(ServiceError):
    reason = "template_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, event_id: int):
        self.event_id = event_id
        super().__init__("service is unavailable due to missing template")


class InternalError(ServiceError):
    public = False


class DeliveryFailed(ServiceError):
    reason = "delivery_failed"
    detail = "could not deliver notification to any recipient"


class CatalogError(Exception):
    """Raised at startup when the event catalog cannot be loaded or validated."""


def error_response(status_code: int, reason: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "reason": reason, "request_id": get_request_id()},
    )


class RecoveryMiddleware(BaseHTTPMiddleware):
    """
    Per-request recovery boundary.

    Any exception that escapes the route and the registered handlers is
    logged with its traceback and turned into a 500 response, so one failing
    request never takes the process down.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception(
                "Recovered from unhandled error",
                extra={"method": request.method, "path": request.url.path},
            )
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                InternalError.reason,
                InternalError.detail,
            )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.reason}: {exc.detail}", extra={"path": request.url.path})
        else:
            logger.info(f"{exc.reason}: {exc.detail}", extra={"path": request.url.path})
        detail = exc.detail if exc.public else InternalError.detail
        return error_response(exc.status_code, exc.reason, detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Request validation failed: {exc.errors()}")
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            InvalidPayload.reason,
            InvalidPayload.detail,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "request failed"
        return error_response(exc.status_code, f"http_{exc.status_code}", detail)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(
            f"Database error: {exc.__class__.__name__}: {exc}",
            extra={"method": request.method, "path": request.url.path},
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            InternalError.reason,
            InternalError.detail,
        )
