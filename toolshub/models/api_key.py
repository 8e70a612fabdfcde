"""
API Key Model
=============

Keys are stored as HMAC-SHA256 hashes. The raw ``pk_<32 hex>`` key is
shown once at creation time and never persisted.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class APIKey(SQLModel, table=True):
    """
    Persistent API key record.

    ``key_hash`` is HMAC-SHA256(raw_key, hmac secret) and is the lookup
    column; ``key_prefix`` holds the first characters for display.
    """

    __tablename__ = "api_keys"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    key_prefix: str = Field(max_length=16)
    key_hash: str = Field(unique=True, index=True, max_length=128)
    label: Optional[str] = Field(default=None, nullable=True, max_length=255)
    last_used_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    revoked_at: Optional[datetime] = Field(default=None, nullable=True)
