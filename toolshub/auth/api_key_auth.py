"""
API Key Authentication (Credential Resolver)
============================================

Maps an ``Authorization: Bearer <key>`` header to an Identity.

Key format: ``pk_<32 hex>``
    - Raw key is shown once at creation and NEVER stored.
    - Lookup is an exact match on HMAC-SHA256(raw key) against the
      non-revoked rows of api_keys.
    - HMAC uses TOOLSHUB_APIKEY_HMAC_SECRET; if unset, one is generated,
      persisted to <data_directory>/.toolshub_hmac_secret and a WARNING
      is logged.

Sandbox key: TOOLSHUB_SANDBOX_API_KEY resolves to a fixed shared identity
without any lookup. It is never billed and is limited only by its own
daily allowance (see services.tool_pipeline).

Lookup failures (store error or timeout) are logged and collapse to
"no identity", so the caller answers 401 rather than leaking internals.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from cachetools import TTLCache
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.database import get_session_context
from toolshub.models.api_key import APIKey

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "pk_"
DEFAULT_KEY_LABEL = "Default Key"


@dataclass(frozen=True)
class Identity:
    """Who is calling. Derived per request, never persisted."""

    key_id: str
    user_id: str
    is_sandbox: bool = False


SANDBOX_IDENTITY = Identity(key_id="sandbox", user_id="sandbox", is_sandbox=True)

# key_hash -> Identity. Revocation evicts explicitly.
identity_cache: TTLCache = TTLCache(maxsize=1000, ttl=settings.auth_cache_ttl)


# ---------------------------------------------------------------------------
# HMAC secret management
# ---------------------------------------------------------------------------
_HMAC_SECRET_FILE = Path(settings.data_directory) / ".toolshub_hmac_secret"


def _get_hmac_secret() -> str:
    """Return the HMAC secret for API key hashing.

    Priority:
        1. TOOLSHUB_APIKEY_HMAC_SECRET env var / settings
        2. Persisted file at <data_directory>/.toolshub_hmac_secret
        3. Auto-generate, persist, and log WARNING
    """
    if settings.apikey_hmac_secret:
        return settings.apikey_hmac_secret

    if _HMAC_SECRET_FILE.exists():
        stored = _HMAC_SECRET_FILE.read_text().strip()
        if stored:
            settings.apikey_hmac_secret = stored
            logger.info("Loaded HMAC secret from %s", _HMAC_SECRET_FILE)
            return stored

    generated = secrets.token_hex(32)
    try:
        _HMAC_SECRET_FILE.parent.mkdir(parents=True, exist_ok=True)
        _HMAC_SECRET_FILE.write_text(generated)
        _HMAC_SECRET_FILE.chmod(0o600)
    except OSError as exc:
        logger.warning("Could not persist HMAC secret to %s: %s", _HMAC_SECRET_FILE, exc)

    settings.apikey_hmac_secret = generated
    logger.warning(
        "TOOLSHUB_APIKEY_HMAC_SECRET not set, auto-generated and persisted to %s. "
        "Set TOOLSHUB_APIKEY_HMAC_SECRET in production so keys survive redeploys.",
        _HMAC_SECRET_FILE,
    )
    return generated


def hmac_hash_secret(raw_key: str) -> str:
    """HMAC-SHA256 hash of a raw API key."""
    hmac_key = _get_hmac_secret().encode()
    return hmac.new(hmac_key, raw_key.encode(), hashlib.sha256).hexdigest()


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(16)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """``"Bearer <token>"`` -> token. Anything else -> None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def _lookup_identity(key_hash: str) -> Optional[Identity]:
    with get_session_context() as session:
        stmt = select(APIKey).where(
            APIKey.key_hash == key_hash,
            APIKey.revoked_at.is_(None),  # type: ignore[union-attr]
        )
        record = session.exec(stmt).first()
        if record is None:
            return None
        return Identity(key_id=str(record.id), user_id=record.user_id)


async def resolve_credential(authorization: Optional[str]) -> Optional[Identity]:
    """Resolve the Authorization header to an Identity, or None.

    Read-only: never writes to the store.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return None

    if hmac.compare_digest(token.encode(), settings.sandbox_api_key.encode()):
        return SANDBOX_IDENTITY

    if not token.startswith(API_KEY_PREFIX):
        return None

    key_hash = hmac_hash_secret(token)
    cached = identity_cache.get(key_hash)
    if cached is not None:
        return cached

    try:
        identity = await run_sync(_lookup_identity, key_hash, timeout=settings.store_timeout_s)
    except (SQLAlchemyError, TimeoutError) as exc:
        logger.error("API key lookup failed, treating as unauthenticated: %s", exc)
        return None

    if identity is None:
        logger.info("Unknown or revoked API key: %s...", token[:7])
        return None

    identity_cache[key_hash] = identity
    return identity


def touch_api_key(key_id: str) -> None:
    """Record last use of a key. Best effort; callers ignore failures."""
    with get_session_context() as session:
        record = session.get(APIKey, int(key_id))
        if record is None:
            return
        record.last_used_at = datetime.now(timezone.utc)
        session.add(record)
        session.commit()


# ---------------------------------------------------------------------------
# API key management helpers (account endpoints)
# ---------------------------------------------------------------------------

def create_api_key(user_id: str, label: Optional[str] = None) -> Tuple[APIKey, str]:
    """Create and persist a key. Returns (record, raw_key); raw_key is never stored."""
    raw_key = generate_api_key()
    record = APIKey(
        user_id=user_id,
        key_prefix=raw_key[:10],
        key_hash=hmac_hash_secret(raw_key),
        label=label,
    )
    with get_session_context() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    logger.info("API key created: user=%s key_id=%s", user_id, record.id)
    return record, raw_key


def list_api_keys(user_id: str) -> List[APIKey]:
    with get_session_context() as session:
        stmt = (
            select(APIKey)
            .where(APIKey.user_id == user_id, APIKey.revoked_at.is_(None))  # type: ignore[union-attr]
            .order_by(APIKey.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(session.exec(stmt).all())


def has_key_with_label(user_id: str, label: str) -> bool:
    with get_session_context() as session:
        stmt = select(APIKey.id).where(
            APIKey.user_id == user_id,
            APIKey.label == label,
            APIKey.revoked_at.is_(None),  # type: ignore[union-attr]
        )
        return session.exec(stmt).first() is not None


def revoke_api_key(user_id: str, key_id: int) -> bool:
    """Revoke one of *user_id*'s keys. False if no such active key."""
    with get_session_context() as session:
        record = session.get(APIKey, key_id)
        if record is None or record.user_id != user_id or record.revoked_at is not None:
            return False
        record.revoked_at = datetime.now(timezone.utc)
        session.add(record)
        session.commit()
        key_hash = record.key_hash

    identity_cache.pop(key_hash, None)
    logger.info("API key revoked: user=%s key_id=%s", user_id, key_id)
    return True
