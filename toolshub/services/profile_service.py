"""
Profile Service (Profile & Plan Accessor)
=========================================

PURPOSE:
    Loads billing profiles as immutable BillingProfile snapshots and owns
    the account-side settings writes (auto-recharge, spending limit,
    Stripe customer / payment method).

    Balance-moving writes live in ledger_service and auto_recharge; they
    bump ``version`` so a snapshot taken here can be used for a
    compare-and-set later.

PAID:
    is_paid(profile) is ``balance_cents > 0``. It selects the rate tier.
    ``plan`` is a separate field that only selects the monthly ceiling.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update

from toolshub.core.database import get_engine, get_session_context, sqlite_retry
from toolshub.models.billing import BillingProfile, BillingProfileRecord

logger = logging.getLogger(__name__)

_profiles = BillingProfileRecord.__table__  # type: ignore[attr-defined]


class ProfileNotFoundError(LookupError):
    """A write targeted a user with no billing profile."""


def get_profile(user_id: str) -> Optional[BillingProfile]:
    """Snapshot of *user_id*'s billing profile, or None if there is none.

    Store errors propagate.
    """
    with get_session_context() as session:
        record = session.get(BillingProfileRecord, user_id)
        if record is None:
            return None
        return BillingProfile.from_record(record)


def is_paid(profile: BillingProfile) -> bool:
    return profile.balance_cents > 0


def ensure_profile(user_id: str) -> bool:
    """Create a default profile for *user_id* if missing. True if created."""
    with get_session_context() as session:
        if session.get(BillingProfileRecord, user_id) is not None:
            return False
        session.add(BillingProfileRecord(user_id=user_id))
        session.commit()
    logger.info("Billing profile created: user=%s", user_id)
    return True


def _update_settings(user_id: str, **values) -> bool:
    """Settings-only update. Does not touch balance, so ``version`` is left alone."""
    values["updated_at"] = datetime.now(timezone.utc)
    stmt = update(_profiles).where(_profiles.c.user_id == user_id).values(**values)

    def _run() -> int:
        with get_engine().begin() as conn:
            return conn.execute(stmt).rowcount

    return sqlite_retry(_run) == 1


def update_auto_recharge_settings(
    user_id: str,
    enabled: bool,
    threshold_cents: Optional[int],
    amount_cents: Optional[int],
) -> bool:
    updated = _update_settings(
        user_id,
        auto_recharge_enabled=enabled,
        auto_recharge_threshold_cents=threshold_cents,
        auto_recharge_amount_cents=amount_cents,
    )
    if updated:
        logger.info(
            "Auto-recharge settings updated: user=%s enabled=%s threshold=%s amount=%s",
            user_id, enabled, threshold_cents, amount_cents,
        )
    return updated


def update_spending_limit(user_id: str, limit_cents: Optional[int]) -> bool:
    return _update_settings(user_id, monthly_spending_limit_cents=limit_cents)


def set_stripe_customer(user_id: str, customer_id: str) -> bool:
    return _update_settings(user_id, stripe_customer_id=customer_id)


def set_default_payment_method(user_id: str, payment_method_id: str) -> bool:
    return _update_settings(user_id, default_payment_method_id=payment_method_id)
