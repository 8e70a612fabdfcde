"""
FastAPI exception handlers.

Every failure, whether raised as ToolsHubError, produced by request model
validation, raised by the framework (unknown route, wrong method) or left
unhandled, is rendered as the standard error envelope.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolshub.core.errors import ToolsHubError
from toolshub.core.errors.registry import error_registry
from toolshub.models.responses import error_response

logger = logging.getLogger(__name__)


async def toolshub_error_handler(request: Request, exc: ToolsHubError) -> JSONResponse:
    """Convert ToolsHubError into the error envelope."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.message},
        )
        return error_response("INTERNAL_ERROR", "An unexpected error occurred.", 500)

    log_extra = {
        "error.code": exc.code,
        "error.message": exc.message,
        "http.path": request.url.path,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }
    logger.log(entry.log_level, entry.title, extra=log_extra)

    return error_response(
        entry.code,
        exc.message or entry.safe_message,
        entry.http_status,
        details=exc.details,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request model validation failures become VALIDATION_ERROR."""
    details = format_validation_errors(exc.errors())
    logger.info("request_validation_failed", extra={"http.path": request.url.path, "issues": len(details)})
    return error_response("VALIDATION_ERROR", "Invalid request", 400, details=details)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework HTTP errors (404 route, 405 method, ...) in envelope form."""
    code = error_registry.code_for_status(exc.status_code) or "INTERNAL_ERROR"
    entry = error_registry.get(code)
    message = exc.detail if isinstance(exc.detail, str) else (entry.safe_message if entry else "Error")
    response = error_response(code, message, exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", extra={"http.path": request.url.path})
    return error_response("INTERNAL_ERROR", "An unexpected error occurred.", 500)


def format_validation_errors(errors) -> list:
    """Reduce pydantic error dicts to JSON-safe {field, message} pairs."""
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in errors
    ]


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ToolsHubError, toolshub_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
