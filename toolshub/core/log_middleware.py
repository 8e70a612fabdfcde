"""
Per-request correlation ids.

Every request gets a request id and a correlation id (taken from the
incoming x-request-id / x-correlation-id headers when present). Both are
bound to the logging contextvars for the duration of the request, echoed
on the response, and the request is summarised in one access log line.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar, Token
from typing import List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from toolshub.core.structured_logging import (
    correlation_id_var,
    key_id_var,
    request_id_var,
    user_id_var,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
CORRELATION_ID_HEADER = "x-correlation-id"

# Ids longer than this from clients are replaced
_MAX_ID_LENGTH = 128


def _incoming_id(request: Request, header: str) -> str:
    value = request.headers.get(header, "").strip()
    if value and len(value) <= _MAX_ID_LENGTH:
        return value
    return uuid.uuid4().hex


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _incoming_id(request, REQUEST_ID_HEADER)
        correlation_id = _incoming_id(request, CORRELATION_ID_HEADER)

        tokens: List[Tuple[ContextVar, Token]] = [
            (request_id_var, request_id_var.set(request_id)),
            (correlation_id_var, correlation_id_var.set(correlation_id)),
            (key_id_var, key_id_var.set(None)),
            (user_id_var, user_id_var.set(None)),
        ]
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            logger.info(
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                status_code,
                (time.monotonic() - started) * 1000,
            )
            for var, token in reversed(tokens):
                var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
