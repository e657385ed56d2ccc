"""
Application error taxonomy.

Every error raised by services derives from ``AppError`` and carries the HTTP
status it maps to. ``register_error_handlers`` installs the boundary handler
that renders them as ``{"error": ..., "details": ...}``.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class SubscriptionBusy(Conflict):
    default_message = "Subscription is being updated, try again"


class EmailAlreadyRegistered(Conflict):
    # Registration clients expect 400 for a duplicate email
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Email already registered"


class ValidationFailure(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class UpstreamFailure(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Upstream service failed"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path}: {type(exc).__name__} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    """Log unhandled exceptions and return a generic 500 without internals"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(f"Uncaught exception: {e}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error"},
            )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_middleware(UncaughtExceptionMiddleware)
