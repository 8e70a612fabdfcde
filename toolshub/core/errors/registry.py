"""
Error registry: the code -> (status, severity, safe message) table.

registry.yaml is read once at startup. Loading fails fast when an entry is
malformed or when a code the service raises is missing, so a bad deploy
never reaches the first 402/429 before noticing.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping

import yaml

from toolshub.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_PATH = os.path.join(os.path.dirname(__file__), "registry.yaml")

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}
_FIELDS = ("code", "title", "severity", "retryable", "http_status", "safe_message")

# Codes raised by the pipeline, routers and handlers
SERVICE_CODES = (
    "UNAUTHORIZED",
    "BAD_REQUEST",
    "VALIDATION_ERROR",
    "NOT_FOUND",
    "METHOD_NOT_ALLOWED",
    "CONFLICT",
    "INSUFFICIENT_BALANCE",
    "RATE_LIMIT_EXCEEDED",
    "INTERNAL_ERROR",
    "SERVICE_UNAVAILABLE",
)


class RegistryValidationError(Exception):
    """registry.yaml is malformed or incomplete."""


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    title: str
    severity: str
    retryable: bool
    http_status: int
    safe_message: str

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self.severity]


def _parse_entry(index: int, raw: Any) -> ErrorEntry:
    if not isinstance(raw, Mapping):
        raise RegistryValidationError(f"Entry {index} is not a mapping")

    missing = [name for name in _FIELDS if name not in raw]
    if missing:
        raise RegistryValidationError(f"Entry {index} ({raw.get('code', '?')}): missing {', '.join(missing)}")

    code = str(raw["code"])
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Entry {index}: invalid code {code!r}")
    if raw["severity"] not in _LOG_LEVELS:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    status = int(raw["http_status"])
    if not 400 <= status <= 599:
        raise RegistryValidationError(f"{code}: http_status {status} is not an error status")

    return ErrorEntry(
        code=code,
        title=str(raw["title"]),
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        http_status=status,
        safe_message=str(raw["safe_message"]),
    )


class ErrorRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self._by_status: Dict[int, str] = {}
        self.schema_version = 0

    def load(self, path: str | None = None, required: Iterable[str] = SERVICE_CODES) -> None:
        """Parse *path* (default: the bundled registry.yaml) and swap it in."""
        with open(path or DEFAULT_PATH, "r") as f:
            data = yaml.safe_load(f) or {}

        raw_entries = data.get("errors")
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        by_status: Dict[int, str] = {}
        for index, raw in enumerate(raw_entries):
            entry = _parse_entry(index, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry
            # First code listed for a status wins
            by_status.setdefault(entry.http_status, entry.code)

        absent = sorted(set(required) - entries.keys())
        if absent:
            raise RegistryValidationError(f"Registry is missing service codes: {', '.join(absent)}")

        self._entries = entries
        self._by_status = by_status
        self.schema_version = int(data.get("schema_version", 0))
        logger.info("Error registry loaded: %d codes (schema v%d)", len(entries), self.schema_version)

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        """Like get(), but an unknown code is a KeyError."""
        try:
            return self._entries[code]
        except KeyError:
            raise KeyError(f"Unknown error code: {code!r}") from None

    def code_for_status(self, http_status: int) -> str | None:
        """Code used to render a bare HTTP error (unknown route, wrong method)."""
        return self._by_status.get(http_status)

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)


error_registry = ErrorRegistry()
