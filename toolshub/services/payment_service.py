"""
Payment Service: Stripe Collaborator
=====================================

PURPOSE:
    Thin wrapper over the Stripe SDK for prepaid credits:
    1. **create_customer()**: Stripe customer for a user (on first deposit).
    2. **create_checkout_session()**: Hosted checkout for "add funds"; saves
       the card for later off-session use.
    3. **charge_off_session()**: Confirmed off-session PaymentIntent, used by
       auto-recharge. ``requires_action`` (3DS) counts as a failure since no
       user is present to complete it.
    4. **payment_method_for_intent() / set_default_payment_method()**:
       Store the card used at checkout as the customer's default.
    5. **construct_webhook_event()**: Signature-verified webhook parsing.

    All methods are synchronous (the SDK blocks); async callers go through
    core.async_utils.run_sync with TOOLSHUB_PAYMENT_TIMEOUT_S.

CONFIGURATION (env vars with TOOLSHUB_ prefix):
    TOOLSHUB_STRIPE_SECRET_KEY     : Stripe secret API key
    TOOLSHUB_STRIPE_WEBHOOK_SECRET : Stripe webhook signing secret
    TOOLSHUB_CURRENCY              : Charge currency (default usd)
    TOOLSHUB_PUBLIC_URL            : Frontend base URL for checkout redirects
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from toolshub.config import settings

logger = logging.getLogger(__name__)

PURPOSE_ADD_FUNDS = "add_funds"
PURPOSE_AUTO_RECHARGE = "auto_recharge"


class PaymentNotConfiguredError(RuntimeError):
    """Raised when a Stripe call is attempted without a secret key."""


@dataclass(frozen=True)
class ChargeResult:
    succeeded: bool
    intent_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class PaymentService:
    @property
    def configured(self) -> bool:
        return bool(settings.stripe_secret_key)

    def _stripe(self):
        if not settings.stripe_secret_key:
            raise PaymentNotConfiguredError("Stripe is not configured. Set TOOLSHUB_STRIPE_SECRET_KEY.")
        stripe.api_key = settings.stripe_secret_key
        return stripe

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        customer = self._stripe().Customer.create(
            email=email,
            metadata={"userId": user_id},
        )
        logger.info("Stripe customer created: user=%s customer=%s", user_id, customer.id)
        return customer.id

    def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        self._stripe().Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    def payment_method_for_intent(self, payment_intent_id: str) -> Optional[str]:
        intent = self._stripe().PaymentIntent.retrieve(payment_intent_id)
        payment_method = intent.payment_method
        if payment_method is None:
            return None
        return payment_method if isinstance(payment_method, str) else payment_method.id

    # ------------------------------------------------------------------
    # Add funds (hosted checkout)
    # ------------------------------------------------------------------

    def create_checkout_session(self, user_id: str, customer_id: str, amount_cents: int) -> CheckoutSession:
        session = self._stripe().checkout.Session.create(
            customer=customer_id,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": settings.currency,
                        "product_data": {
                            "name": "Account credits",
                            "description": f"Add ${amount_cents / 100:.2f} to your balance",
                        },
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            payment_intent_data={"setup_future_usage": "off_session"},
            success_url=f"{settings.public_url}/dashboard?payment=success",
            cancel_url=f"{settings.public_url}/dashboard?payment=cancelled",
            metadata={
                "userId": user_id,
                "amount": str(amount_cents),
                "type": PURPOSE_ADD_FUNDS,
            },
        )
        logger.info("Checkout session created: user=%s amount=%d session=%s", user_id, amount_cents, session.id)
        return CheckoutSession(session_id=session.id, url=session.url)

    # ------------------------------------------------------------------
    # Off-session charge (auto-recharge)
    # ------------------------------------------------------------------

    def charge_off_session(
        self,
        user_id: str,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        idempotency_key: str,
        purpose: str = PURPOSE_AUTO_RECHARGE,
    ) -> ChargeResult:
        """Charge a saved card. Card declines come back as a failed ChargeResult.

        Stripe replays the first result for a repeated *idempotency_key*, so
        an SDK or network retry of the same attempt never charges twice.
        """
        try:
            intent = self._stripe().PaymentIntent.create(
                amount=amount_cents,
                currency=settings.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                metadata={"userId": user_id, "type": purpose},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc)
            logger.warning("Off-session charge failed: user=%s amount=%d error=%s", user_id, amount_cents, message)
            return ChargeResult(succeeded=False, error=message)

        if intent.status == "succeeded":
            return ChargeResult(succeeded=True, intent_id=intent.id, status=intent.status)

        logger.warning(
            "Off-session charge not completed: user=%s intent=%s status=%s",
            user_id, intent.id, intent.status,
        )
        return ChargeResult(
            succeeded=False,
            intent_id=intent.id,
            status=intent.status,
            error=f"Payment {intent.status}",
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify and parse a webhook. Raises ValueError or stripe.SignatureVerificationError."""
        if not settings.stripe_webhook_secret:
            raise PaymentNotConfiguredError("Stripe webhooks are not configured. Set TOOLSHUB_STRIPE_WEBHOOK_SECRET.")
        return stripe.Webhook.construct_event(payload, signature or "", settings.stripe_webhook_secret)


payment_service = PaymentService()
