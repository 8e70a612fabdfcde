"""
Account Router
==============

Endpoints the web dashboard calls with the user's session JWT:

    POST /api/account/ensure-profile           Create profile + default key on first sign-in
    GET  /api/account/profile                  Balance, plan, usage, recent transactions
    GET  /api/account/auto-recharge            Auto-recharge settings and history
    PUT  /api/account/auto-recharge            Update auto-recharge settings
    POST /api/account/auto-recharge/charge     Charge the configured amount now
    PUT  /api/account/spending-limit           Set or clear the monthly spending limit
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator

from toolshub.auth.api_key_auth import DEFAULT_KEY_LABEL, create_api_key, has_key_with_label
from toolshub.auth.jwt_auth import AccountUser, get_current_account
from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.errors import ToolsHubError
from toolshub.models.billing import BillingProfile
from toolshub.models.responses import success_body
from toolshub.routers.api_keys import key_summary
from toolshub.services import profile_service
from toolshub.services.auto_recharge import auto_recharge_service
from toolshub.services.ledger_service import ledger_service

logger = logging.getLogger(__name__)

router = APIRouter()


class AutoRechargeSettingsRequest(BaseModel):
    enabled: bool
    threshold: Optional[int] = Field(None, ge=0, description="Recharge when balance falls to this many cents")
    amount: Optional[int] = Field(None, description="Top-up amount in cents")

    @model_validator(mode="after")
    def _complete_when_enabled(self):
        if self.enabled:
            if self.threshold is None or self.amount is None:
                raise ValueError("threshold and amount are required when auto-recharge is enabled")
            if self.amount < settings.minimum_deposit_cents:
                raise ValueError(f"amount must be at least {settings.minimum_deposit_cents} cents")
        return self


class SpendingLimitRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=0, description="Monthly limit in cents; null removes it")


async def _load_profile(user_id: str) -> BillingProfile:
    profile = await run_sync(profile_service.get_profile, user_id, timeout=settings.store_timeout_s)
    if profile is None:
        raise ToolsHubError("NOT_FOUND", "User profile not found")
    return profile


def _auto_recharge_status(profile: BillingProfile) -> dict:
    return {
        "enabled": profile.auto_recharge_enabled,
        "threshold": profile.auto_recharge_threshold_cents,
        "amount": profile.auto_recharge_amount_cents,
        "hasPaymentMethod": bool(profile.default_payment_method_id),
        "successfulAttempts": profile.successful_auto_recharges_count,
        "failedAttempts": profile.failed_auto_recharge_count,
        "lastAttempt": (
            profile.last_auto_recharge_attempt.isoformat()
            if profile.last_auto_recharge_attempt else None
        ),
        "currentBalance": profile.balance_cents,
    }


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

def _ensure_profile_and_key(user_id: str) -> dict:
    created = profile_service.ensure_profile(user_id)
    api_key = None
    if not has_key_with_label(user_id, DEFAULT_KEY_LABEL):
        record, raw_key = create_api_key(user_id, DEFAULT_KEY_LABEL)
        api_key = {**key_summary(record), "apiKey": raw_key}
    return {"profileCreated": created, "defaultKey": api_key}


@router.post("/ensure-profile", summary="Create the billing profile and default API key")
async def ensure_profile(user: AccountUser = Depends(get_current_account)):
    result = await run_sync(_ensure_profile_and_key, user.user_id, timeout=settings.store_timeout_s)
    return success_body(result)


@router.get("/profile", summary="Billing profile")
async def get_account_profile(user: AccountUser = Depends(get_current_account)):
    profile = await _load_profile(user.user_id)
    transactions = await run_sync(ledger_service.list_transactions, user.user_id, timeout=settings.store_timeout_s)
    return success_body({
        **profile.to_public_dict(),
        "monthlyCap": ledger_service.monthly_cap_for(profile),
        "transactions": transactions,
    })


# ---------------------------------------------------------------------------
# Auto-recharge
# ---------------------------------------------------------------------------

@router.get("/auto-recharge", summary="Auto-recharge status")
async def get_auto_recharge(user: AccountUser = Depends(get_current_account)):
    profile = await _load_profile(user.user_id)
    return success_body(_auto_recharge_status(profile))


@router.put("/auto-recharge", summary="Update auto-recharge settings")
async def put_auto_recharge(
    body: AutoRechargeSettingsRequest,
    user: AccountUser = Depends(get_current_account),
):
    updated = await run_sync(
        profile_service.update_auto_recharge_settings,
        user.user_id,
        body.enabled,
        body.threshold,
        body.amount,
        timeout=settings.store_timeout_s,
    )
    if not updated:
        raise ToolsHubError("NOT_FOUND", "User profile not found")
    profile = await _load_profile(user.user_id)
    return success_body(_auto_recharge_status(profile))


@router.post("/auto-recharge/charge", summary="Charge the auto-recharge amount now")
async def charge_auto_recharge(user: AccountUser = Depends(get_current_account)):
    profile = await _load_profile(user.user_id)
    if not profile.auto_recharge_enabled:
        raise ToolsHubError("BAD_REQUEST", "Auto-recharge is not enabled")
    if not profile.stripe_customer_id or not profile.default_payment_method_id:
        raise ToolsHubError(
            "BAD_REQUEST",
            "No payment method on file. Add funds via checkout first to save a payment method.",
            details={"needsCheckout": True},
        )

    result = await auto_recharge_service.trigger_manual_recharge(profile)
    if not result.triggered:
        raise ToolsHubError(
            "BAD_REQUEST",
            result.error or "Auto-recharge failed",
            details={"currentBalance": profile.balance_cents},
        )

    return success_body({
        "message": f"Auto-recharge successful. Added ${profile.auto_recharge_amount_cents / 100:.2f} to your account.",
        "newBalance": result.new_balance,
    })


# ---------------------------------------------------------------------------
# Spending limit
# ---------------------------------------------------------------------------

@router.put("/spending-limit", summary="Set the monthly spending limit")
async def put_spending_limit(
    body: SpendingLimitRequest,
    user: AccountUser = Depends(get_current_account),
):
    updated = await run_sync(
        profile_service.update_spending_limit, user.user_id, body.limit, timeout=settings.store_timeout_s
    )
    if not updated:
        raise ToolsHubError("NOT_FOUND", "User profile not found")
    profile = await _load_profile(user.user_id)
    return success_body({
        "monthlySpendingLimit": profile.monthly_spending_limit_cents,
        "monthlyCap": ledger_service.monthly_cap_for(profile),
        "usageThisMonth": profile.effective_monthly_spend,
    })
