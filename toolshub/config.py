"""
ToolsHub Application Configuration
===================================

PURPOSE:
    Pydantic-Settings based configuration for the ToolsHub API.
    All settings can be overridden via environment variables (TOOLSHUB_ prefix),
    or a local .env file.

    DATABASE_URL (no prefix) selects the database; see toolshub.core.database.
"""

import logging
import os
from typing import Dict, List, Literal, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    app_name: str = "ToolsHub"
    debug: bool = False
    app_version: str = os.environ.get("TOOLSHUB_VERSION", "dev")

    data_directory: str = "data"
    log_dir: str = "logs"

    # Alembic on startup; tests and throwaway instances use create_all instead
    run_migrations: bool = True

    # Shared demo credential. Resolves without a lookup and never touches billing.
    sandbox_api_key: str = "pk_sandbox_public_demo"
    sandbox_daily_limit: int = 100

    # API key hashing (HMAC-SHA256). Auto-generated and persisted when unset.
    apikey_hmac_secret: Optional[str] = None
    auth_cache_ttl: int = 60  # seconds

    # Rate tiers
    free_requests_per_second: int = 1
    free_daily_limit: int = 100
    paid_requests_per_second: int = 10
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    redis_url: Optional[str] = None

    # When True, key holders with no balance get the rate-limited free tier
    # without billing. When False every key-backed call must be paid for.
    free_tier_enabled: bool = False

    # Monthly spend ceilings per plan, in cents
    monthly_cap_free_cents: int = 5_000
    monthly_cap_pro_cents: int = 100_000

    # Per-call cost overrides in fractional cents, e.g. {"word-counter": 0.5}
    tool_costs: Dict[str, float] = {}

    # Auth provider JWTs (account endpoints)
    jwt_secret: Optional[str] = None
    jwt_audience: str = "authenticated"
    jwt_algorithms: List[str] = ["HS256"]

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    currency: str = "usd"
    minimum_deposit_cents: int = 1_000
    auto_recharge_cooldown_s: int = 60

    # External call timeouts (seconds)
    store_timeout_s: float = 5.0
    payment_timeout_s: float = 20.0

    public_url: str = "http://localhost:3000"

    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        env_file = ".env"
        env_prefix = "TOOLSHUB_"


settings = Settings()

if settings.free_tier_enabled:
    logger.info("Unbilled free tier enabled for key holders without balance")
