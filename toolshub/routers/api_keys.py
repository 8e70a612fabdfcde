"""
API Key Management
==================

GET    /api/account/api-keys            List active keys (masked).
POST   /api/account/api-keys            Create a key; the raw key is returned once.
DELETE /api/account/api-keys/{key_id}   Revoke a key. It stops resolving immediately.

Authenticated with the account JWT (see toolshub.auth.jwt_auth).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from toolshub.auth.api_key_auth import create_api_key, list_api_keys, revoke_api_key
from toolshub.auth.jwt_auth import AccountUser, get_current_account
from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.errors import ToolsHubError
from toolshub.models.api_key import APIKey
from toolshub.models.responses import success_body

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateApiKeyRequest(BaseModel):
    label: Optional[str] = Field(None, max_length=100, description="Human-readable key name")


def key_summary(record: APIKey) -> dict:
    return {
        "id": record.id,
        "label": record.label,
        "prefix": record.key_prefix + "...",
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "lastUsedAt": record.last_used_at.isoformat() if record.last_used_at else None,
    }


@router.get("", summary="List API keys")
async def get_api_keys(user: AccountUser = Depends(get_current_account)):
    records = await run_sync(list_api_keys, user.user_id, timeout=settings.store_timeout_s)
    return success_body({"keys": [key_summary(r) for r in records]})


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create an API key")
async def post_api_key(
    body: CreateApiKeyRequest,
    user: AccountUser = Depends(get_current_account),
):
    record, raw_key = await run_sync(create_api_key, user.user_id, body.label, timeout=settings.store_timeout_s)
    return success_body({**key_summary(record), "apiKey": raw_key})


@router.delete("/{key_id}", summary="Revoke an API key")
async def delete_api_key(key_id: int, user: AccountUser = Depends(get_current_account)):
    revoked = await run_sync(revoke_api_key, user.user_id, key_id, timeout=settings.store_timeout_s)
    if not revoked:
        raise ToolsHubError("NOT_FOUND", f"API key '{key_id}' not found")
    return success_body({"id": key_id, "revoked": True})
