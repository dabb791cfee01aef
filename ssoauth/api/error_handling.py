from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ssoauth.api.schemas import Envelope, ErrorBody
from ssoauth.logging import get_logger
from ssoauth.service.errors import ServiceError

logger = get_logger(__name__)

# Stable error codes mapped to HTTP status codes
_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    500: "server_error",
    504: "cancelled",
}

_OPAQUE_MESSAGE = "internal server error"


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Create an error response envelope."""
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for credential-service failures."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        error_code = getattr(exc, "error_code", None)
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=error_code,
            error_type=type(exc).__name__,
            message=exc.message,
            detail=exc.detail,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )
        # Infrastructure detail stays in the logs
        if exc.status_code >= 500 and exc.status_code != 504:
            return _error_response(exc.status_code, _OPAQUE_MESSAGE, code=error_code)
        details = exc.detail if exc.status_code < 500 else None
        return _error_response(exc.status_code, exc.message, details, code=error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            error_count=len(exc.errors()),
        )
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        return _error_response(
            400, "invalid request", {"fields": fields}, code="validation_error"
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
            message = _OPAQUE_MESSAGE
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, _OPAQUE_MESSAGE, code="server_error")
