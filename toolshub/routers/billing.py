"""
Add Funds
=========

POST /api/stripe/add-funds   {"amount": 1500}  (cents)

Creates the billing profile and Stripe customer if needed, then a hosted
checkout session. The balance is credited later by the
checkout.session.completed webhook, not here.
"""

import logging

import stripe
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from toolshub.auth.jwt_auth import AccountUser, get_current_account
from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.errors import ToolsHubError
from toolshub.models.responses import success_body
from toolshub.services import profile_service
from toolshub.services.payment_service import PaymentNotConfiguredError, payment_service

logger = logging.getLogger(__name__)

router = APIRouter()


class AddFundsRequest(BaseModel):
    amount: int = Field(..., description="Deposit in cents")


def _customer_for(user: AccountUser) -> str:
    profile_service.ensure_profile(user.user_id)
    profile = profile_service.get_profile(user.user_id)
    if profile.stripe_customer_id:
        return profile.stripe_customer_id
    customer_id = payment_service.create_customer(user.user_id, user.email)
    profile_service.set_stripe_customer(user.user_id, customer_id)
    return customer_id


@router.post("/add-funds", summary="Start a checkout session to add funds")
async def add_funds(body: AddFundsRequest, user: AccountUser = Depends(get_current_account)):
    if body.amount < settings.minimum_deposit_cents:
        raise ToolsHubError(
            "VALIDATION_ERROR",
            f"Minimum deposit is ${settings.minimum_deposit_cents / 100:.2f}",
            details=[{"field": "amount", "message": f"must be at least {settings.minimum_deposit_cents}"}],
        )
    if not payment_service.configured:
        raise ToolsHubError("SERVICE_UNAVAILABLE", "Payments are not configured")

    try:
        customer_id = await run_sync(_customer_for, user, timeout=settings.payment_timeout_s)
        session = await run_sync(
            payment_service.create_checkout_session,
            user.user_id,
            customer_id,
            body.amount,
            timeout=settings.payment_timeout_s,
        )
    except (stripe.StripeError, PaymentNotConfiguredError) as exc:
        logger.error("Checkout session failed: user=%s error=%s", user.user_id, exc)
        raise ToolsHubError(
            "SERVICE_UNAVAILABLE",
            "Could not start checkout. Please try again.",
            context={"user_id": user.user_id, "stripe_error": str(exc)},
        )

    return success_body({"sessionId": session.session_id, "url": session.url})
