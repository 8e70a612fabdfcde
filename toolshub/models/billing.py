"""
Billing Models
==============

SQLModel tables for prepaid-credit billing state:
- BillingProfileRecord: one row per user. Balance, sub-cent remainder,
  monthly spend, spending limit and auto-recharge settings.
- BillingTransaction: append-only ledger history (charges, deposits,
  auto-recharges).

BillingProfile is the immutable snapshot handed between pipeline steps.
Mutations never go through the snapshot; they are conditional UPDATEs
guarded by ``version`` (see services.ledger_service).

Money is integer cents. The sub-cent remainder is stored in units of
1/10,000 cent so that fractional tool costs accumulate exactly.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

FRACTION_SCALE = 10_000  # pending_fractional_units per cent

PLAN_FREE = "free"
PLAN_PRO = "pro"

TX_CHARGE = "charge"
TX_DEPOSIT = "deposit"
TX_AUTO_RECHARGE = "auto_recharge"


def current_spend_period(now: Optional[datetime] = None) -> str:
    """UTC calendar month, ``YYYY-MM``."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


class BillingProfileRecord(SQLModel, table=True):
    """Persistent billing state for one user."""

    __tablename__ = "billing_profile"

    user_id: str = Field(primary_key=True, max_length=128)
    plan: str = Field(default=PLAN_FREE, max_length=32)
    balance_cents: int = Field(default=0)
    pending_fractional_units: int = Field(default=0)
    monthly_spend_cents: int = Field(default=0)
    spend_period: Optional[str] = Field(default=None, nullable=True, max_length=7)
    monthly_spending_limit_cents: Optional[int] = Field(default=None, nullable=True)
    stripe_customer_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    default_payment_method_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    auto_recharge_enabled: bool = Field(default=False)
    auto_recharge_threshold_cents: Optional[int] = Field(default=None, nullable=True)
    auto_recharge_amount_cents: Optional[int] = Field(default=None, nullable=True)
    failed_auto_recharge_count: int = Field(default=0)
    successful_auto_recharges_count: int = Field(default=0)
    last_auto_recharge_attempt: Optional[datetime] = Field(default=None, nullable=True)
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BillingTransaction(SQLModel, table=True):
    """Append-only ledger entry. Charges are negative, credits positive."""

    __tablename__ = "billing_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    type: str = Field(max_length=32)
    amount_cents: int = Field(default=0)
    tool_id: Optional[str] = Field(default=None, nullable=True, max_length=64)
    description: Optional[str] = Field(default=None, nullable=True, max_length=255)
    stripe_intent_id: Optional[str] = Field(default=None, nullable=True, unique=True, max_length=255)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class BillingProfile:
    """Read-only snapshot of a billing_profile row."""

    user_id: str
    plan: str
    balance_cents: int
    pending_fractional_units: int
    monthly_spend_cents: int
    spend_period: Optional[str]
    monthly_spending_limit_cents: Optional[int]
    stripe_customer_id: Optional[str]
    default_payment_method_id: Optional[str]
    auto_recharge_enabled: bool
    auto_recharge_threshold_cents: Optional[int]
    auto_recharge_amount_cents: Optional[int]
    failed_auto_recharge_count: int
    successful_auto_recharges_count: int
    last_auto_recharge_attempt: Optional[datetime]
    version: int

    @classmethod
    def from_record(cls, record: BillingProfileRecord) -> "BillingProfile":
        return cls(
            user_id=record.user_id,
            plan=record.plan,
            balance_cents=record.balance_cents,
            pending_fractional_units=record.pending_fractional_units,
            monthly_spend_cents=record.monthly_spend_cents,
            spend_period=record.spend_period,
            monthly_spending_limit_cents=record.monthly_spending_limit_cents,
            stripe_customer_id=record.stripe_customer_id,
            default_payment_method_id=record.default_payment_method_id,
            auto_recharge_enabled=record.auto_recharge_enabled,
            auto_recharge_threshold_cents=record.auto_recharge_threshold_cents,
            auto_recharge_amount_cents=record.auto_recharge_amount_cents,
            failed_auto_recharge_count=record.failed_auto_recharge_count,
            successful_auto_recharges_count=record.successful_auto_recharges_count,
            last_auto_recharge_attempt=record.last_auto_recharge_attempt,
            version=record.version,
        )

    @property
    def pending_fractional_cents(self) -> Decimal:
        return Decimal(self.pending_fractional_units) / FRACTION_SCALE

    @property
    def effective_monthly_spend(self) -> int:
        """Spend in the current period; a stale period counts as zero."""
        if self.spend_period != current_spend_period():
            return 0
        return self.monthly_spend_cents

    def to_public_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "plan": self.plan,
            "balance": self.balance_cents,
            "pendingFractionalCents": float(self.pending_fractional_cents),
            "usageThisMonth": self.effective_monthly_spend,
            "monthlySpendingLimit": self.monthly_spending_limit_cents,
            "hasPaymentMethod": bool(self.default_payment_method_id),
            "autoRecharge": {
                "enabled": self.auto_recharge_enabled,
                "threshold": self.auto_recharge_threshold_cents,
                "amount": self.auto_recharge_amount_cents,
                "failedCount": self.failed_auto_recharge_count,
                "successfulCount": self.successful_auto_recharges_count,
                "lastAttempt": (
                    self.last_auto_recharge_attempt.isoformat()
                    if self.last_auto_recharge_attempt else None
                ),
            },
        }
