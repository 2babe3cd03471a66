"""Error taxonomy for the drive core and the HTTP envelope it maps onto.

Services raise the ``DriveError`` subclasses below. The FastAPI handlers
registered by ``register_exception_handlers`` turn them into
``{"error": message}`` bodies with the matching status code.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import IS_PRODUCTION


class DriveError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class Unauthorized(DriveError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(DriveError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(DriveError):
    status_code = 404
    default_message = "Not found"


class Conflict(DriveError):
    status_code = 409
    default_message = "Conflict"


class InvalidRequest(DriveError):
    status_code = 400
    default_message = "Invalid request"


class PayloadTooLarge(DriveError):
    status_code = 413
    default_message = "File size exceeds limit"


class QuotaExceeded(DriveError):
    status_code = 507
    default_message = "Storage limit exceeded"


class Gone(DriveError):
    status_code = 410
    default_message = "Gone"


class DependencyUnavailable(DriveError):
    status_code = 503
    default_message = "Storage backend unavailable"


class Internal(DriveError):
    pass


def error_body(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DriveError)
    async def drive_error_handler(request: Request, exc: DriveError):
        if isinstance(exc, Internal):
            logger.opt(exception=exc).error("Internal error on {} {}", request.method, request.url.path)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = {}
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            fields[location or "body"] = err.get("msg", "invalid value")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("Validation failed", fields),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error("Unhandled exception on {} {}", request.method, request.url.path)
        message = "Internal server error" if IS_PRODUCTION else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(message),
        )
