"""API error types and the JSON error envelope."""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderdesk.logging_config import get_logger

logger = get_logger("errors")


class ApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthorizedError(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class RateLimitedError(ApiError):
    status_code = 429
    code = "RATE_LIMITED"


class UpstreamError(ApiError):
    status_code = 502
    code = "UPSTREAM_ERROR"


def error_body(message: str, code: str) -> dict:
    return {"success": False, "error": {"message": message, "code": code}}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error(
                f"API error: {exc.message}",
                extra={"context": {"path": request.url.path, "code": exc.code}},
            )
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        return JSONResponse(status_code=400, content=error_body(message, "VALIDATION_ERROR"))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(
            "Unhandled error",
            exc_info=exc,
            extra={"context": {"path": request.url.path, "method": request.method}},
        )
        return JSONResponse(status_code=500, content=error_body("Internal server error", "INTERNAL_ERROR"))
