"""
Stripe Webhook
==============

POST /api/stripe/webhook

Handled events:
    checkout.session.completed (metadata.type=add_funds)
        Credit the deposit, save the Stripe customer and make the card used
        at checkout the default for auto-recharge.
    payment_intent.succeeded (metadata.type=auto_recharge)
        Credit an off-session top-up whose inline result was lost (timeout).

Credits are idempotent by payment intent id, so Stripe retries and the
inline auto-recharge path never double-credit.
"""

import logging
from typing import Any, Optional

import stripe
from fastapi import APIRouter, Request

from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.errors import ToolsHubError
from toolshub.models.billing import TX_AUTO_RECHARGE, TX_DEPOSIT
from toolshub.models.responses import success_body
from toolshub.services import profile_service
from toolshub.services.ledger_service import ledger_service
from toolshub.services.payment_service import (
    PURPOSE_ADD_FUNDS,
    PURPOSE_AUTO_RECHARGE,
    PaymentNotConfiguredError,
    payment_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _field(obj: Any, name: str) -> Any:
    try:
        return obj[name]
    except (KeyError, TypeError):
        return None


def _metadata(obj: Any) -> dict:
    return dict(_field(obj, "metadata") or {})


def _save_default_payment_method(user_id: str, customer_id: str, intent_id: str) -> None:
    try:
        payment_method = payment_service.payment_method_for_intent(intent_id)
        if not payment_method:
            return
        payment_service.set_default_payment_method(customer_id, payment_method)
    except stripe.StripeError as exc:
        logger.error("Failed to set default payment method: user=%s error=%s", user_id, exc)
        return
    profile_service.set_default_payment_method(user_id, payment_method)
    logger.info("Default payment method stored: user=%s", user_id)


def handle_checkout_completed(session: Any) -> Optional[int]:
    """Credit an add-funds checkout. Returns the new balance, or None if skipped."""
    metadata = _metadata(session)
    if metadata.get("type") != PURPOSE_ADD_FUNDS:
        return None

    user_id = metadata.get("userId")
    amount = metadata.get("amount")
    if not user_id or not amount:
        logger.warning("Checkout session without userId/amount metadata: %s", _field(session, "id"))
        return None

    amount_cents = int(amount)
    intent_id = _field(session, "payment_intent")
    customer_id = _field(session, "customer")

    profile_service.ensure_profile(user_id)
    if customer_id:
        profile_service.set_stripe_customer(user_id, customer_id)

    new_balance = ledger_service.credit_funds(
        user_id,
        amount_cents,
        TX_DEPOSIT,
        stripe_intent_id=intent_id or _field(session, "id"),
        description="Deposited funds via Stripe",
    )
    if new_balance is None:
        return None

    if intent_id and customer_id:
        _save_default_payment_method(user_id, customer_id, intent_id)
    return new_balance


def handle_payment_intent_succeeded(intent: Any) -> Optional[int]:
    metadata = _metadata(intent)
    if metadata.get("type") != PURPOSE_AUTO_RECHARGE:
        return None

    user_id = metadata.get("userId")
    if not user_id:
        return None

    amount_cents = int(_field(intent, "amount_received") or _field(intent, "amount") or 0)
    if amount_cents <= 0:
        return None

    return ledger_service.credit_funds(
        user_id,
        amount_cents,
        TX_AUTO_RECHARGE,
        stripe_intent_id=_field(intent, "id"),
        description=f"Auto-recharge: ${amount_cents / 100:.2f}",
    )


@router.post("/webhook", summary="Stripe webhook receiver")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise ToolsHubError("BAD_REQUEST", "Missing signature")

    try:
        event = payment_service.construct_webhook_event(payload, signature)
    except PaymentNotConfiguredError as exc:
        raise ToolsHubError("SERVICE_UNAVAILABLE", "Webhooks are not configured", context={"reason": str(exc)})
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("Webhook verification failed: %s", exc)
        raise ToolsHubError("BAD_REQUEST", "Invalid signature")

    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        await run_sync(handle_checkout_completed, obj, timeout=settings.payment_timeout_s)
    elif event_type == "payment_intent.succeeded":
        await run_sync(handle_payment_intent_succeeded, obj, timeout=settings.store_timeout_s)
    elif event_type == "payment_intent.payment_failed":
        metadata = _metadata(obj)
        error = _field(obj, "last_payment_error")
        logger.info(
            "Payment failed: user=%s type=%s reason=%s",
            metadata.get("userId"), metadata.get("type"), _field(error, "message") if error else None,
        )
    else:
        logger.debug("Unhandled webhook event type: %s", event_type)

    return success_body({"received": True})
