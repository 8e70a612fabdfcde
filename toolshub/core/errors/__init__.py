"""
Error code system.

ToolsHubError is the exception for all structured API errors. Raise it
with a registry code and the error handlers render the standard response
envelope with the registry's HTTP status.

Usage:
    from toolshub.core.errors import ToolsHubError
    raise ToolsHubError("INSUFFICIENT_BALANCE", "This API call costs $0.0100.")
"""

from __future__ import annotations

import re
from typing import Any

CODE_PATTERN = re.compile(r"^[A-Z][A-Z_]*[A-Z]$")


class ToolsHubError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "RATE_LIMIT_EXCEEDED".
        message: Client-facing message. Falls back to the registry's
            safe_message when omitted.
        details: Optional client-facing payload (validation issues etc.).
        context: Internal key-value context for structured logging only.
    """

    def __init__(
        self,
        code: str,
        message: str | None = None,
        details: Any = None,
        context: dict | None = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.message = message
        self.details = details
        self.context = context or {}
        super().__init__(f"{code}: {message}" if message else code)
