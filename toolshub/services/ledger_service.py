"""
Ledger Service: Balance Check, Monthly Cap & Deduction
=======================================================

PURPOSE:
    Money side of a billed tool call:
    1. **check_balance()**: Pure. Adds the tool cost to the carried sub-cent
       remainder, splits it into whole cents to deduct now and the new
       remainder, and decides whether the balance covers it.
    2. **check_monthly_limit()**: Pure. Applies the plan ceiling, lowered by
       the user's own spending limit, to this month's spend.
    3. **deduct_credits()**: Commits the deduction with ONE conditional
       UPDATE that computes the new balance, remainder and monthly spend
       from the stored row and only matches while the row can still pay.

FRACTIONAL ACCOUNTING:
    total          = pending_fractional + cost
    cents_deducted = floor(total)
    remaining      = total - cents_deducted      (carried to the next call)

    Ten calls at 0.1 cent deduct exactly one cent in total.

CONCURRENCY:
    The UPDATE is guarded by the balance and the monthly cap, not by a
    snapshot: racing calls on one profile each apply their cost to the
    current row, and all succeed while the balance covers them. A call that
    matches zero rows is never retried; the profile is re-read and the call
    is refused with INSUFFICIENT_BALANCE. No call is ever charged twice and
    the balance never goes below zero.

CONFIGURATION (env vars with TOOLSHUB_ prefix):
    TOOLSHUB_TOOL_COSTS, TOOLSHUB_MONTHLY_CAP_FREE_CENTS,
    TOOLSHUB_MONTHLY_CAP_PRO_CENTS, TOOLSHUB_STORE_TIMEOUT_S
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError

from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.database import get_engine, sqlite_retry
from toolshub.models.billing import (
    FRACTION_SCALE,
    TX_CHARGE,
    BillingProfile,
    BillingProfileRecord,
    BillingTransaction,
    current_spend_period,
)
from toolshub.pricing import cents_to_units, format_cents, get_tool_cost, plan_monthly_cap
from toolshub.services.profile_service import ProfileNotFoundError, get_profile

logger = logging.getLogger(__name__)

__all__ = [
    "LedgerService",
    "BalanceCheck",
    "MonthlyLimitCheck",
    "DeductionResult",
    "ledger_service",
]

_profiles = BillingProfileRecord.__table__  # type: ignore[attr-defined]
_transactions = BillingTransaction.__table__  # type: ignore[attr-defined]

REASON_ZERO_BALANCE = "zero_balance"
REASON_INSUFFICIENT = "insufficient_balance"


def _cents_charged(cost_units: int, new_pending_units: int) -> int:
    """Whole cents a deduction took, recovered from the remainder it left.

    The old remainder is below one cent, so the call took either
    ``cost // SCALE`` cents, or one more when the remainder wrapped (the new
    remainder is then smaller than the cost's own sub-cent part).
    """
    whole, part = divmod(cost_units, FRACTION_SCALE)
    return whole if new_pending_units >= part else whole + 1


@dataclass(frozen=True)
class BalanceCheck:
    """Result of check_balance()."""

    allowed: bool
    tool_cost: Decimal
    cents_deducted: int
    remaining_fractional: Decimal
    balance_after_deduction: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class MonthlyLimitCheck:
    """Result of check_monthly_limit()."""

    allowed: bool
    cap_cents: int
    spent_cents: int
    error: Optional[str] = None


@dataclass(frozen=True)
class DeductionResult:
    """Result of deduct_credits(). ``code`` is set only on failure."""

    success: bool
    new_balance: Optional[int]
    cents_deducted: int
    remaining_fractional: Decimal
    error: Optional[str] = None
    code: Optional[str] = None


class LedgerService:
    """Balance checks and deductions against billing_profile."""

    # ------------------------------------------------------------------
    # Pre-flight: check_balance
    # ------------------------------------------------------------------

    def check_balance(self, profile: BillingProfile, tool_id: str) -> BalanceCheck:
        cost = get_tool_cost(tool_id)
        total = profile.pending_fractional_cents + cost
        cents = int(total.to_integral_value(rounding=ROUND_FLOOR))
        remaining = total - cents
        balance = profile.balance_cents

        if balance <= 0:
            return BalanceCheck(
                allowed=False,
                tool_cost=cost,
                cents_deducted=cents,
                remaining_fractional=remaining,
                reason=REASON_ZERO_BALANCE,
                error=(
                    f"Insufficient balance. This API call costs {format_cents(cost)}. "
                    f"Current balance: {format_cents(balance)}. Please add funds to continue."
                ),
            )

        if balance < cents:
            return BalanceCheck(
                allowed=False,
                tool_cost=cost,
                cents_deducted=cents,
                remaining_fractional=remaining,
                reason=REASON_INSUFFICIENT,
                error=(
                    f"Insufficient balance. This API call costs {format_cents(cost)}. "
                    f"Current balance: {format_cents(balance)}."
                ),
            )

        return BalanceCheck(
            allowed=True,
            tool_cost=cost,
            cents_deducted=cents,
            remaining_fractional=remaining,
            balance_after_deduction=balance - cents,
        )

    # ------------------------------------------------------------------
    # Pre-flight: monthly cap
    # ------------------------------------------------------------------

    def monthly_cap_for(self, profile: BillingProfile) -> int:
        cap = plan_monthly_cap(profile.plan)
        if profile.monthly_spending_limit_cents is not None:
            cap = min(cap, profile.monthly_spending_limit_cents)
        return cap

    def check_monthly_limit(self, profile: BillingProfile, additional_cents: int) -> MonthlyLimitCheck:
        cap = self.monthly_cap_for(profile)
        spent = profile.effective_monthly_spend

        if spent + additional_cents > cap:
            return MonthlyLimitCheck(
                allowed=False,
                cap_cents=cap,
                spent_cents=spent,
                error=(
                    f"Monthly spending limit reached. You've spent {format_cents(spent)} "
                    f"of your {format_cents(cap)} monthly limit."
                ),
            )
        return MonthlyLimitCheck(allowed=True, cap_cents=cap, spent_cents=spent)

    # ------------------------------------------------------------------
    # Commit: deduct_credits
    # ------------------------------------------------------------------

    def _apply_deduction(
        self,
        user_id: str,
        cost_units: int,
        cap_cents: int,
        tool_id: str,
    ) -> Optional[tuple[int, int, int]]:
        """Deduct *cost_units* in one conditional UPDATE plus the charge row.

        Returns ``(new_balance, new_pending_units, cents_charged)``, or None
        when the row no longer covers the call (balance or monthly cap).
        """
        now = datetime.now(timezone.utc)
        period = current_spend_period(now)
        total = _profiles.c.pending_fractional_units + cost_units
        charged = total // FRACTION_SCALE
        spent = case((_profiles.c.spend_period == period, _profiles.c.monthly_spend_cents), else_=0)
        stmt = (
            update(_profiles)
            .where(_profiles.c.user_id == user_id)
            .where(_profiles.c.balance_cents > 0)
            .where(_profiles.c.balance_cents >= charged)
            .where(spent + charged <= cap_cents)
            .values(
                balance_cents=_profiles.c.balance_cents - charged,
                pending_fractional_units=total % FRACTION_SCALE,
                monthly_spend_cents=spent + charged,
                spend_period=period,
                version=_profiles.c.version + 1,
                updated_at=now,
            )
        )

        def _run() -> Optional[tuple[int, int, int]]:
            with get_engine().begin() as conn:
                if conn.execute(stmt).rowcount != 1:
                    return None
                row = conn.execute(
                    select(_profiles.c.balance_cents, _profiles.c.pending_fractional_units)
                    .where(_profiles.c.user_id == user_id)
                ).one()
                cents = _cents_charged(cost_units, row.pending_fractional_units)
                if cents > 0:
                    conn.execute(
                        _transactions.insert().values(
                            user_id=user_id,
                            type=TX_CHARGE,
                            amount_cents=-cents,
                            tool_id=tool_id,
                            description=f"API call: {tool_id}",
                            created_at=now,
                        )
                    )
                return row.balance_cents, row.pending_fractional_units, cents

        return sqlite_retry(_run)

    async def deduct_credits(
        self,
        profile: BillingProfile,
        cents_deducted: int,
        remaining_fractional: Decimal,
        tool_id: str,
    ) -> DeductionResult:
        """Atomically deduct the call cost that check_balance() priced.

        *cents_deducted* and *remaining_fractional* were computed from
        *profile*; the cost they imply is re-applied to the stored row, so
        calls racing on one profile all succeed while the balance covers them.

        Raises TimeoutError if the store does not answer in time.
        """
        cost_units = (
            cents_deducted * FRACTION_SCALE
            + cents_to_units(remaining_fractional)
            - profile.pending_fractional_units
        )
        if cost_units < 0:
            raise ValueError(f"Deduction for {tool_id} implies a negative cost")

        applied = await run_sync(
            self._apply_deduction,
            profile.user_id,
            cost_units,
            self.monthly_cap_for(profile),
            tool_id,
            timeout=settings.store_timeout_s,
        )
        if applied is None:
            return await self._explain_refusal(profile, tool_id)

        new_balance, pending_units, cents = applied
        logger.info(
            "Credits deducted: user=%s tool=%s cents=%d new_balance=%d",
            profile.user_id, tool_id, cents, new_balance,
        )
        return DeductionResult(
            success=True,
            new_balance=new_balance,
            cents_deducted=cents,
            remaining_fractional=Decimal(pending_units) / FRACTION_SCALE,
        )

    async def _explain_refusal(self, stale: BillingProfile, tool_id: str) -> DeductionResult:
        fresh = await run_sync(get_profile, stale.user_id, timeout=settings.store_timeout_s)
        logger.warning(
            "Deduction refused: user=%s tool=%s snapshot_balance=%d current_balance=%s",
            stale.user_id, tool_id, stale.balance_cents, fresh.balance_cents if fresh else None,
        )

        if fresh is not None:
            check = self.check_balance(fresh, tool_id)
            error = check.error
            if check.allowed:
                monthly = self.check_monthly_limit(fresh, check.cents_deducted)
                error = monthly.error
            if error:
                return DeductionResult(
                    success=False,
                    new_balance=fresh.balance_cents,
                    cents_deducted=0,
                    remaining_fractional=fresh.pending_fractional_cents,
                    error=error,
                    code="INSUFFICIENT_BALANCE",
                )

        # Profile removed, or its limits changed under the call
        return DeductionResult(
            success=False,
            new_balance=None,
            cents_deducted=0,
            remaining_fractional=stale.pending_fractional_cents,
            error="Billing profile changed concurrently; this call was not charged. Please retry.",
            code="INTERNAL_ERROR",
        )

    # ------------------------------------------------------------------
    # Credits: deposits and recharges
    # ------------------------------------------------------------------

    def credit_funds(
        self,
        user_id: str,
        amount_cents: int,
        tx_type: str,
        stripe_intent_id: Optional[str] = None,
        description: Optional[str] = None,
        **profile_values,
    ) -> Optional[int]:
        """Add *amount_cents* to the balance and append a transaction row.

        Idempotent per *stripe_intent_id*: a second credit for the same
        intent is ignored and returns None. Otherwise returns the new balance.
        Extra *profile_values* are applied in the same UPDATE.

        Raises ProfileNotFoundError if the user has no billing profile.
        """
        now = datetime.now(timezone.utc)

        def _run() -> Optional[int]:
            try:
                with get_engine().begin() as conn:
                    conn.execute(
                        _transactions.insert().values(
                            user_id=user_id,
                            type=tx_type,
                            amount_cents=amount_cents,
                            description=description,
                            stripe_intent_id=stripe_intent_id,
                            created_at=now,
                        )
                    )
                    result = conn.execute(
                        update(_profiles)
                        .where(_profiles.c.user_id == user_id)
                        .values(
                            balance_cents=_profiles.c.balance_cents + amount_cents,
                            version=_profiles.c.version + 1,
                            updated_at=now,
                            **profile_values,
                        )
                    )
                    if result.rowcount != 1:
                        raise ProfileNotFoundError(user_id)
                    return conn.execute(
                        select(_profiles.c.balance_cents).where(_profiles.c.user_id == user_id)
                    ).scalar_one()
            except IntegrityError:
                logger.info("Duplicate credit ignored: user=%s intent=%s", user_id, stripe_intent_id)
                return None

        new_balance = sqlite_retry(_run)
        if new_balance is not None:
            logger.info(
                "Funds credited: user=%s type=%s amount=%d new_balance=%d",
                user_id, tx_type, amount_cents, new_balance,
            )
        return new_balance

    def record_transaction(
        self,
        user_id: str,
        tx_type: str,
        amount_cents: int,
        description: Optional[str] = None,
        stripe_intent_id: Optional[str] = None,
    ) -> None:
        """Append a history row without moving money (e.g. a failed recharge)."""
        stmt = _transactions.insert().values(
            user_id=user_id,
            type=tx_type,
            amount_cents=amount_cents,
            description=description,
            stripe_intent_id=stripe_intent_id,
            created_at=datetime.now(timezone.utc),
        )

        def _run() -> None:
            with get_engine().begin() as conn:
                conn.execute(stmt)

        sqlite_retry(_run)

    def list_transactions(self, user_id: str, limit: int = 50) -> list[dict]:
        stmt = (
            select(_transactions)
            .where(_transactions.c.user_id == user_id)
            .order_by(_transactions.c.created_at.desc(), _transactions.c.id.desc())
            .limit(limit)
        )
        with get_engine().connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            {
                "id": row["id"],
                "type": row["type"],
                "amount": row["amount_cents"],
                "toolId": row["tool_id"],
                "description": row["description"],
                "createdAt": row["created_at"].isoformat() if row["created_at"] else None,
            }
            for row in rows
        ]


ledger_service = LedgerService()
