"""
Stripe webhook and add-funds tests.

Signature verification is mocked at payment_service.construct_webhook_event;
events are plain dicts shaped like Stripe's JSON.
"""

import pytest
import stripe

from conftest import TEST_USER, make_profile
from toolshub.config import settings
from toolshub.models.billing import TX_AUTO_RECHARGE
from toolshub.services.ledger_service import ledger_service
from toolshub.services.payment_service import CheckoutSession, payment_service
from toolshub.services.profile_service import get_profile

SIGNED = {"stripe-signature": "t=1,v1=abc"}


def checkout_event(amount="1500", user_id=TEST_USER, intent="pi_checkout_1"):
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "customer": "cus_1",
                "payment_intent": intent,
                "metadata": {"userId": user_id, "amount": amount, "type": "add_funds"},
            }
        },
    }


def intent_event(amount=1_000, intent="pi_auto_9", kind="auto_recharge"):
    return {
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": intent,
                "amount": amount,
                "amount_received": amount,
                "metadata": {"userId": TEST_USER, "type": kind},
            }
        },
    }


@pytest.fixture
def stripe_calls(mocker):
    mocker.patch.object(payment_service, "payment_method_for_intent", return_value="pm_saved")
    return mocker.patch.object(payment_service, "set_default_payment_method")


def post_event(client, mocker, event):
    mocker.patch.object(payment_service, "construct_webhook_event", return_value=event)
    return client.post("/api/stripe/webhook", content=b"{}", headers=SIGNED)


class TestSignature:
    def test_missing_signature(self, client):
        resp = client.post("/api/stripe/webhook", content=b"{}")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Missing signature"

    def test_invalid_signature(self, client, mocker):
        mocker.patch.object(
            payment_service,
            "construct_webhook_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc"),
        )
        resp = client.post("/api/stripe/webhook", content=b"{}", headers=SIGNED)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid signature"

    def test_not_configured(self, client):
        resp = client.post("/api/stripe/webhook", content=b"{}", headers=SIGNED)
        assert resp.status_code == 503


class TestCheckoutCompleted:
    def test_credits_deposit_and_saves_card(self, client, mocker, stripe_calls):
        resp = post_event(client, mocker, checkout_event())

        assert resp.status_code == 200
        assert resp.json()["data"] == {"received": True}
        profile = get_profile(TEST_USER)
        assert profile.balance_cents == 1_500
        assert profile.stripe_customer_id == "cus_1"
        assert profile.default_payment_method_id == "pm_saved"
        stripe_calls.assert_called_once_with("cus_1", "pm_saved")

    def test_redelivery_is_idempotent(self, client, mocker, stripe_calls):
        post_event(client, mocker, checkout_event())
        post_event(client, mocker, checkout_event())

        assert get_profile(TEST_USER).balance_cents == 1_500
        assert len(ledger_service.list_transactions(TEST_USER)) == 1

    def test_adds_to_existing_balance(self, client, mocker, stripe_calls):
        make_profile(balance_cents=250)
        post_event(client, mocker, checkout_event())
        assert get_profile(TEST_USER).balance_cents == 1_750

    def test_card_lookup_failure_still_credits(self, client, mocker):
        mocker.patch.object(
            payment_service,
            "payment_method_for_intent",
            side_effect=stripe.StripeError("network"),
        )
        resp = post_event(client, mocker, checkout_event())

        assert resp.status_code == 200
        profile = get_profile(TEST_USER)
        assert profile.balance_cents == 1_500
        assert profile.default_payment_method_id is None

    def test_other_checkout_types_ignored(self, client, mocker):
        event = checkout_event()
        event["data"]["object"]["metadata"]["type"] = "subscription"
        assert post_event(client, mocker, event).status_code == 200
        assert get_profile(TEST_USER) is None


class TestPaymentIntentSucceeded:
    def test_auto_recharge_credit(self, client, mocker):
        make_profile(balance_cents=10)
        post_event(client, mocker, intent_event())

        assert get_profile(TEST_USER).balance_cents == 1_010
        history = ledger_service.list_transactions(TEST_USER)
        assert history[0]["type"] == TX_AUTO_RECHARGE

    def test_already_credited_inline(self, client, mocker):
        make_profile(balance_cents=10)
        ledger_service.credit_funds(TEST_USER, 1_000, TX_AUTO_RECHARGE, stripe_intent_id="pi_auto_9")

        post_event(client, mocker, intent_event())

        assert get_profile(TEST_USER).balance_cents == 1_010

    def test_checkout_intents_ignored(self, client, mocker):
        make_profile(balance_cents=10)
        post_event(client, mocker, intent_event(kind="add_funds"))
        assert get_profile(TEST_USER).balance_cents == 10


class TestAddFunds:
    def test_below_minimum(self, client, account_headers):
        resp = client.post("/api/stripe/add-funds", json={"amount": 500}, headers=account_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Minimum deposit is $10.00"

    def test_not_configured(self, client, account_headers):
        resp = client.post("/api/stripe/add-funds", json={"amount": 1_500}, headers=account_headers)
        assert resp.status_code == 503

    def test_creates_customer_and_session(self, client, account_headers, mocker, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
        create_customer = mocker.patch.object(payment_service, "create_customer", return_value="cus_new")
        create_session = mocker.patch.object(
            payment_service,
            "create_checkout_session",
            return_value=CheckoutSession(session_id="cs_1", url="https://checkout.stripe.test/cs_1"),
        )

        resp = client.post("/api/stripe/add-funds", json={"amount": 1_500}, headers=account_headers)

        assert resp.status_code == 200
        assert resp.json()["data"] == {"sessionId": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
        create_customer.assert_called_once_with(TEST_USER, "dev@example.com")
        create_session.assert_called_once_with(TEST_USER, "cus_new", 1_500)
        assert get_profile(TEST_USER).stripe_customer_id == "cus_new"

    def test_reuses_existing_customer(self, client, account_headers, mocker, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
        make_profile(balance_cents=0, stripe_customer_id="cus_existing")
        create_customer = mocker.patch.object(payment_service, "create_customer")
        mocker.patch.object(
            payment_service,
            "create_checkout_session",
            return_value=CheckoutSession(session_id="cs_2", url="https://checkout.stripe.test/cs_2"),
        )

        resp = client.post("/api/stripe/add-funds", json={"amount": 2_000}, headers=account_headers)

        assert resp.status_code == 200
        create_customer.assert_not_called()

    def test_stripe_error(self, client, account_headers, mocker, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
        mocker.patch.object(payment_service, "create_customer", return_value="cus_new")
        mocker.patch.object(payment_service, "create_checkout_session", side_effect=stripe.StripeError("boom"))

        resp = client.post("/api/stripe/add-funds", json={"amount": 1_500}, headers=account_headers)

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"
