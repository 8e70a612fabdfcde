"""
Structured logging with structlog.

JSON lines to stderr and to a rotating file under TOOLSHUB_LOG_DIR. Plain
``logging.getLogger(__name__)`` calls go through the same processor chain,
so every line carries the service name, version and whichever of
request_id / correlation_id / key_id / user_id are bound for the current
request. Raw API keys never reach the output.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
from contextvars import ContextVar
from typing import Optional

import structlog

from toolshub.config import settings

SERVICE_NAME = "toolshub-api"

LOG_FILE = "toolshub.jsonl"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
key_id_var: ContextVar[Optional[str]] = ContextVar("key_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("correlation_id", correlation_id_var),
    ("key_id", key_id_var),
    ("user_id", user_id_var),
)

# pk_ followed by the hex secret
_API_KEY_RE = re.compile(r"\bpk_[0-9a-f]{8,}\b")


def bind_caller(key_id: str, user_id: str) -> None:
    """Attach the resolved API key and user to log lines for this request."""
    key_id_var.set(key_id)
    user_id_var.set(user_id)


def _add_service_context(logger, method_name: str, event_dict: dict) -> dict:
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = settings.app_version
    for field, var in _CONTEXT_FIELDS:
        value = var.get()
        if value:
            event_dict[field] = value
    return event_dict


def _redact_api_keys(logger, method_name: str, event_dict: dict) -> dict:
    for field, value in event_dict.items():
        if isinstance(value, str) and "pk_" in value:
            event_dict[field] = _API_KEY_RE.sub("pk_***", value)
    return event_dict


def _lowercase_level(logger, method_name: str, event_dict: dict) -> dict:
    if "level" in event_dict:
        event_dict["level"] = str(event_dict["level"]).lower()
    return event_dict


def _file_handler(log_dir: str, formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        sys.stderr.write(f"toolshub: file logging disabled ({exc})\n")
        return None
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> None:
    """Configure structlog and the stdlib root logger. Call once at import of the app."""
    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _lowercase_level,
        structlog.stdlib.add_logger_name,
        _add_service_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _redact_api_keys,
            structlog.processors.JSONRenderer(),
        ],
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    file_handler = _file_handler(log_dir or settings.log_dir, formatter)
    if file_handler is not None:
        root.addHandler(file_handler)
    root.setLevel(logging.DEBUG if settings.debug else level)

    for name in ("httpx", "httpcore", "urllib3", "stripe", "asyncio", "watchfiles"):
        logging.getLogger(name).setLevel(logging.WARNING)
