"""
Pytest configuration for ToolsHub tests.

Points the app at a throwaway SQLite database and data directory. This must
happen before any toolshub import, since settings and the engine URL are
read at import time.
"""

import os
import tempfile

_test_data_dir = tempfile.mkdtemp(prefix="toolshub_test_")
os.environ.setdefault("TOOLSHUB_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("TOOLSHUB_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")
os.environ["TOOLSHUB_RUN_MIGRATIONS"] = "false"
os.environ["TOOLSHUB_APIKEY_HMAC_SECRET"] = "test-hmac-secret"
os.environ["TOOLSHUB_JWT_SECRET"] = "test-jwt-secret-with-at-least-32-bytes!"
os.environ["TOOLSHUB_RATE_LIMIT_BACKEND"] = "memory"
os.environ["TOOLSHUB_FREE_TIER_ENABLED"] = "false"

import jwt
import pytest
from sqlalchemy import delete
from sqlmodel import SQLModel

from toolshub.core.database import get_engine, get_session_context

# Import all models so their tables are registered on SQLModel.metadata
from toolshub.models.api_key import APIKey
from toolshub.models.billing import BillingProfileRecord, BillingTransaction
from toolshub.models.favorite import Favorite

SQLModel.metadata.create_all(get_engine())

# Load error registry so ToolsHubError maps to the right HTTP status
from toolshub.core.errors.registry import error_registry
error_registry.load()

from toolshub.auth.api_key_auth import create_api_key, identity_cache
from toolshub.config import settings
from toolshub.services import profile_service, rate_limiter

TEST_USER = "user-1"


@pytest.fixture(autouse=True)
def clean_state():
    """Empty tables, rate-limit counters and the key cache around each test."""
    rate_limiter._rate_limiter = None
    identity_cache.clear()
    yield
    with get_engine().begin() as conn:
        for model in (APIKey, BillingProfileRecord, BillingTransaction, Favorite):
            conn.execute(delete(model.__table__))
    rate_limiter._rate_limiter = None
    identity_cache.clear()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

def make_profile(user_id: str = TEST_USER, **fields):
    """Insert a billing profile row and return its snapshot."""
    with get_session_context() as session:
        session.add(BillingProfileRecord(user_id=user_id, **fields))
        session.commit()
    return profile_service.get_profile(user_id)


def make_key(user_id: str = TEST_USER, label: str = "test") -> str:
    _, raw_key = create_api_key(user_id, label)
    return raw_key


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def account_token(user_id: str = TEST_USER, email: str = "dev@example.com") -> str:
    return jwt.encode(
        {"sub": user_id, "email": email, "aud": settings.jwt_audience},
        settings.jwt_secret,
        algorithm="HS256",
    )


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from toolshub.main import app

    return TestClient(app)


@pytest.fixture
def account_headers():
    return bearer(account_token())
