"""
Auto-Recharge: Threshold Top-Up After a Deduction
==================================================

PURPOSE:
    After a successful deduction, if the user enabled auto-recharge and the
    balance fell to or below their threshold, charge the saved card for the
    configured amount and credit it.

CONDITIONS (all required):
    auto_recharge_enabled, threshold and amount set (amount > 0),
    balance_after_deduction <= threshold, Stripe customer and default
    payment method on file, and no attempt within the cooldown window.

SINGLE ATTEMPT:
    The attempt is claimed with a conditional UPDATE on
    ``last_auto_recharge_attempt`` (compare-and-set against the value the
    snapshot saw). Concurrent requests crossing the threshold together race
    for the claim; one wins, the rest skip.

BEST EFFORT:
    Nothing here can fail the tool call. Errors are logged and reported as
    ``triggered=False``; the committed deduction stands. A charge whose
    outcome is unknown (timeout) is reconciled by the payment_intent
    webhook, which credits idempotently by intent id.

CONFIGURATION (env vars with TOOLSHUB_ prefix):
    TOOLSHUB_AUTO_RECHARGE_COOLDOWN_S  Minimum seconds between attempts (default 60)
    TOOLSHUB_PAYMENT_TIMEOUT_S         Stripe call timeout (default 20)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update

from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.database import get_engine, sqlite_retry
from toolshub.models.billing import TX_AUTO_RECHARGE, BillingProfile, BillingProfileRecord
from toolshub.services.ledger_service import ledger_service
from toolshub.services.payment_service import PURPOSE_AUTO_RECHARGE, ChargeResult, payment_service

logger = logging.getLogger(__name__)

_profiles = BillingProfileRecord.__table__  # type: ignore[attr-defined]


@dataclass(frozen=True)
class AutoRechargeResult:
    """``triggered`` is True only when the top-up was charged and credited."""

    triggered: bool
    attempted: bool = False
    new_balance: Optional[int] = None
    error: Optional[str] = None


NOT_TRIGGERED = AutoRechargeResult(triggered=False)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def attempt_idempotency_key(user_id: str, claimed_at: datetime) -> str:
    """Stripe idempotency key for the attempt that won the cooldown claim."""
    return f"{PURPOSE_AUTO_RECHARGE}:{user_id}:{_as_utc(claimed_at).isoformat()}"


class AutoRechargeService:

    def should_trigger(self, profile: BillingProfile, balance_after_deduction: int) -> bool:
        return (
            profile.auto_recharge_enabled
            and profile.auto_recharge_threshold_cents is not None
            and bool(profile.auto_recharge_amount_cents)
            and profile.auto_recharge_amount_cents > 0
            and balance_after_deduction <= profile.auto_recharge_threshold_cents
            and bool(profile.stripe_customer_id)
            and bool(profile.default_payment_method_id)
        )

    def in_cooldown(self, profile: BillingProfile, now: datetime) -> bool:
        last = profile.last_auto_recharge_attempt
        if last is None:
            return False
        return now - _as_utc(last) < timedelta(seconds=settings.auto_recharge_cooldown_s)

    def _claim_attempt(self, profile: BillingProfile, now: datetime) -> bool:
        """CAS on last_auto_recharge_attempt. True if this caller owns the attempt."""
        column = _profiles.c.last_auto_recharge_attempt
        observed = profile.last_auto_recharge_attempt
        stmt = (
            update(_profiles)
            .where(_profiles.c.user_id == profile.user_id)
            .where(column.is_(None) if observed is None else column == observed)
            .values(last_auto_recharge_attempt=now)
        )

        def _run() -> bool:
            with get_engine().begin() as conn:
                return conn.execute(stmt).rowcount == 1

        return sqlite_retry(_run)

    def _record_failure(self, profile: BillingProfile, charge: ChargeResult) -> None:
        stmt = (
            update(_profiles)
            .where(_profiles.c.user_id == profile.user_id)
            .values(failed_auto_recharge_count=_profiles.c.failed_auto_recharge_count + 1)
        )

        def _run() -> None:
            with get_engine().begin() as conn:
                conn.execute(stmt)

        sqlite_retry(_run)
        ledger_service.record_transaction(
            profile.user_id,
            TX_AUTO_RECHARGE,
            0,
            description=f"Auto-recharge failed: {charge.error} (intent={charge.intent_id})"[:255],
        )

    def _record_success(self, profile: BillingProfile, amount: int, charge: ChargeResult) -> Optional[int]:
        return ledger_service.credit_funds(
            profile.user_id,
            amount,
            TX_AUTO_RECHARGE,
            stripe_intent_id=charge.intent_id,
            description=f"Auto-recharge: ${amount / 100:.2f}",
            successful_auto_recharges_count=_profiles.c.successful_auto_recharges_count + 1,
            failed_auto_recharge_count=0,
        )

    async def _charge_and_record(
        self, profile: BillingProfile, amount: int, claimed_at: datetime
    ) -> AutoRechargeResult:
        charge = await run_sync(
            payment_service.charge_off_session,
            profile.user_id,
            profile.stripe_customer_id,
            profile.default_payment_method_id,
            amount,
            attempt_idempotency_key(profile.user_id, claimed_at),
            PURPOSE_AUTO_RECHARGE,
            timeout=settings.payment_timeout_s,
        )

        if not charge.succeeded:
            await run_sync(self._record_failure, profile, charge, timeout=settings.store_timeout_s)
            return AutoRechargeResult(triggered=False, attempted=True, error=charge.error)

        new_balance = await run_sync(self._record_success, profile, amount, charge, timeout=settings.store_timeout_s)
        if new_balance is None:
            # Already credited by the webhook
            return AutoRechargeResult(triggered=False, attempted=True, error="already credited")

        logger.info(
            "Auto-recharge succeeded: user=%s amount=%d new_balance=%d intent=%s",
            profile.user_id, amount, new_balance, charge.intent_id,
        )
        return AutoRechargeResult(triggered=True, attempted=True, new_balance=new_balance)

    async def handle_auto_recharge(
        self,
        profile: BillingProfile,
        balance_after_deduction: int,
    ) -> AutoRechargeResult:
        """Top up if the threshold was crossed. Never raises."""
        if not self.should_trigger(profile, balance_after_deduction):
            return NOT_TRIGGERED

        now = datetime.now(timezone.utc)
        if self.in_cooldown(profile, now):
            logger.debug("Auto-recharge in cooldown: user=%s", profile.user_id)
            return NOT_TRIGGERED

        attempted = False
        try:
            claimed = await run_sync(self._claim_attempt, profile, now, timeout=settings.store_timeout_s)
            if not claimed:
                logger.info("Auto-recharge already claimed by a concurrent request: user=%s", profile.user_id)
                return NOT_TRIGGERED

            attempted = True
            logger.info(
                "Auto-recharge triggered: user=%s balance_after=%d threshold=%d amount=%d",
                profile.user_id,
                balance_after_deduction,
                profile.auto_recharge_threshold_cents,
                profile.auto_recharge_amount_cents,
            )
            return await self._charge_and_record(profile, profile.auto_recharge_amount_cents, now)
        except Exception as exc:
            logger.exception("Auto-recharge error (call still succeeds): user=%s", profile.user_id)
            return AutoRechargeResult(triggered=False, attempted=attempted, error=str(exc))

    async def trigger_manual_recharge(self, profile: BillingProfile) -> AutoRechargeResult:
        """Charge the configured amount now (account endpoint). Errors propagate."""
        amount = profile.auto_recharge_amount_cents
        if not amount or amount <= 0:
            return AutoRechargeResult(triggered=False, error="Auto-recharge amount is not configured")
        if not profile.stripe_customer_id or not profile.default_payment_method_id:
            return AutoRechargeResult(triggered=False, error="No saved payment method")

        now = datetime.now(timezone.utc)
        claimed = await run_sync(self._claim_attempt, profile, now, timeout=settings.store_timeout_s)
        if not claimed:
            return AutoRechargeResult(triggered=False, error="A recharge is already in progress")
        return await self._charge_and_record(profile, amount, now)


auto_recharge_service = AutoRechargeService()
