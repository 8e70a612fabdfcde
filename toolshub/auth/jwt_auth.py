"""
Account authentication via the auth provider's JWT.

Account endpoints (API keys, favorites, billing settings) are called by the
web frontend with the user's session token: ``Authorization: Bearer <jwt>``.
The token is verified with PyJWT against TOOLSHUB_JWT_SECRET (HS256,
audience TOOLSHUB_JWT_AUDIENCE). The user id is the ``sub`` claim.

Without a configured secret, signature verification can only be skipped
when BOTH settings.debug is True and ENVIRONMENT=development; otherwise
every account request is rejected.
"""

import logging
import os
from typing import Optional

import jwt
from fastapi import Request
from pydantic import BaseModel

from toolshub.auth.api_key_auth import extract_bearer_token
from toolshub.config import settings
from toolshub.core.errors import ToolsHubError

logger = logging.getLogger(__name__)


class AccountUser(BaseModel):
    user_id: str
    email: Optional[str] = None


def _unverified_decode_allowed() -> bool:
    environment = os.environ.get("ENVIRONMENT", "production").lower()
    return settings.debug and environment == "development"


def decode_account_token(token: str) -> dict:
    """Return the verified claims of *token*. Raises ToolsHubError(UNAUTHORIZED)."""
    try:
        if settings.jwt_secret:
            return jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=settings.jwt_algorithms,
                audience=settings.jwt_audience,
            )
        if _unverified_decode_allowed():
            logger.warning(
                "JWT signature NOT verified: TOOLSHUB_JWT_SECRET unset with debug=True and "
                "ENVIRONMENT=development. Do NOT use this in production."
            )
            return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise ToolsHubError("UNAUTHORIZED", "Invalid or expired session token", context={"reason": str(exc)})

    logger.error("TOOLSHUB_JWT_SECRET not configured, rejecting account request")
    raise ToolsHubError("UNAUTHORIZED", "Account authentication is not configured")


async def get_current_account(request: Request) -> AccountUser:
    """FastAPI dependency for account endpoints."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise ToolsHubError("UNAUTHORIZED", "Missing session token")

    claims = decode_account_token(token)
    user_id = claims.get("sub")
    if not user_id:
        raise ToolsHubError("UNAUTHORIZED", "Session token has no subject")

    user = AccountUser(user_id=str(user_id), email=claims.get("email"))
    request.state.user = user
    return user
