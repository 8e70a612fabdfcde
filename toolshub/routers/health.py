"""Cheap liveness check: no store or network calls."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter

from toolshub.config import settings
from toolshub.core.structured_logging import SERVICE_NAME
from toolshub.models.responses import success_body

router = APIRouter()

_STARTED = time.monotonic()


@router.get("/health")
async def health_check():
    return success_body({
        "status": "ok",
        "service": SERVICE_NAME,
        "version": settings.app_version,
        "uptime_s": round(time.monotonic() - _STARTED, 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
