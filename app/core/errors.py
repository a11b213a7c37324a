"""Application error taxonomy and FastAPI exception handlers.

Every error leaves the API as JSON with a human-readable ``message`` and a
machine-readable ``code``. Range errors are the exception: a 416 carries
no body, only ``Content-Range: bytes */<size>``.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for errors converted to structured responses."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "SERVER_ERROR"
    message = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Validation error"


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_FAILED"
    message = "Authentication required"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, code, **kwargs)


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Not authorized to perform this action"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Resource already exists"


class PayloadTooLargeError(AppError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    code = "TOO_LARGE"
    message = "Uploaded file is too large"


class RangeNotSatisfiableError(AppError):
    status_code = status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE
    code = "RANGE_NOT_SATISFIABLE"
    message = "Requested range not satisfiable"

    def __init__(self, size: int):
        super().__init__(headers={"Content-Range": f"bytes */{size}"})
        self.size = size


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    message = "Too many requests, please try again later"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message, details={"retryAfter": retry_after}, headers={"Retry-After": str(retry_after)})


class ServerError(AppError):
    pass


async def app_error_handler(request: Request, exc: AppError) -> Response:
    if isinstance(exc, RangeNotSatisfiableError):
        return Response(status_code=exc.status_code, headers=exc.headers)

    if exc.status_code >= 500:
        logger.error(
            f"{exc.code}: {exc.message}",
            extra={"path": request.url.path, "error_type": type(exc).__name__},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation error", "code": "VALIDATION_ERROR", "details": details},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = "Route not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": message, "code": f"HTTP_{exc.status_code}"},
        headers=getattr(exc, "headers", None),
    )


def unexpected_error_response(exc: Exception, request_id: Optional[str] = None) -> JSONResponse:
    """Generic 500 body; exception text only outside production-like environments."""
    body: Dict[str, Any] = {"message": "Internal server error", "code": "SERVER_ERROR"}
    if settings.environment == "development":
        body["details"] = str(exc)
    if request_id:
        body["requestId"] = request_id
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
