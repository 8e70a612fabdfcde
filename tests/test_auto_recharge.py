"""
Auto-Recharge Tests
===================

handle_auto_recharge() with the Stripe collaborator mocked out.

Coverage:
  - Trigger conditions (threshold, settings, saved card)
  - Success credits the balance and counts the attempt
  - Declines and exceptions never raise and leave the deduction intact
  - Cooldown and the claim CAS admit a single attempt
  - Manual trigger from the account endpoint
  - Off-session charges carry a per-attempt idempotency key
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TEST_USER, make_profile
from toolshub.config import settings
from toolshub.services.auto_recharge import AutoRechargeService, attempt_idempotency_key
from toolshub.services.ledger_service import ledger_service
from toolshub.services.payment_service import ChargeResult, payment_service
from toolshub.services.profile_service import get_profile

ENABLED = dict(
    auto_recharge_enabled=True,
    auto_recharge_threshold_cents=100,
    auto_recharge_amount_cents=1_000,
    stripe_customer_id="cus_123",
    default_payment_method_id="pm_123",
)


@pytest.fixture
def service():
    return AutoRechargeService()


@pytest.fixture
def charge_ok(mocker):
    return mocker.patch.object(
        payment_service,
        "charge_off_session",
        return_value=ChargeResult(succeeded=True, intent_id="pi_auto_1", status="succeeded"),
    )


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

class TestShouldTrigger:
    def test_at_threshold(self, service):
        profile = make_profile(balance_cents=101, **ENABLED)
        assert service.should_trigger(profile, 100) is True

    def test_above_threshold(self, service):
        profile = make_profile(balance_cents=500, **ENABLED)
        assert service.should_trigger(profile, 101) is False

    def test_disabled(self, service):
        profile = make_profile(balance_cents=50, **{**ENABLED, "auto_recharge_enabled": False})
        assert service.should_trigger(profile, 10) is False

    def test_no_payment_method(self, service):
        profile = make_profile(balance_cents=50, **{**ENABLED, "default_payment_method_id": None})
        assert service.should_trigger(profile, 10) is False

    def test_zero_amount(self, service):
        profile = make_profile(balance_cents=50, **{**ENABLED, "auto_recharge_amount_cents": 0})
        assert service.should_trigger(profile, 10) is False


# ---------------------------------------------------------------------------
# handle_auto_recharge
# ---------------------------------------------------------------------------

class TestHandleAutoRecharge:
    @pytest.mark.asyncio
    async def test_not_triggered_above_threshold(self, service, charge_ok):
        profile = make_profile(balance_cents=500, **ENABLED)
        result = await service.handle_auto_recharge(profile, 499)
        assert result.triggered is False
        charge_ok.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_credits_balance(self, service, charge_ok):
        profile = make_profile(balance_cents=100, **ENABLED)

        result = await service.handle_auto_recharge(profile, 100)

        assert result.triggered is True
        assert result.new_balance == 1_100
        fresh = get_profile(TEST_USER)
        charge_ok.assert_called_once_with(
            TEST_USER,
            "cus_123",
            "pm_123",
            1_000,
            attempt_idempotency_key(TEST_USER, fresh.last_auto_recharge_attempt),
            "auto_recharge",
        )
        assert fresh.balance_cents == 1_100
        assert fresh.successful_auto_recharges_count == 1
        assert fresh.failed_auto_recharge_count == 0
        assert fresh.last_auto_recharge_attempt is not None

    @pytest.mark.asyncio
    async def test_decline_is_recorded_not_raised(self, service, mocker):
        mocker.patch.object(
            payment_service,
            "charge_off_session",
            return_value=ChargeResult(succeeded=False, error="Your card was declined."),
        )
        profile = make_profile(balance_cents=50, **ENABLED)

        result = await service.handle_auto_recharge(profile, 50)

        assert result.triggered is False
        assert result.attempted is True
        assert result.error == "Your card was declined."
        fresh = get_profile(TEST_USER)
        assert fresh.balance_cents == 50
        assert fresh.failed_auto_recharge_count == 1
        history = ledger_service.list_transactions(TEST_USER)
        assert history[0]["amount"] == 0
        assert "declined" in history[0]["description"]

    @pytest.mark.asyncio
    async def test_exception_is_swallowed(self, service, mocker):
        mocker.patch.object(payment_service, "charge_off_session", side_effect=RuntimeError("stripe down"))
        profile = make_profile(balance_cents=50, **ENABLED)

        result = await service.handle_auto_recharge(profile, 50)

        assert result.triggered is False
        assert "stripe down" in result.error
        assert get_profile(TEST_USER).balance_cents == 50

    @pytest.mark.asyncio
    async def test_cooldown_skips_attempt(self, service, charge_ok):
        recent = datetime.now(timezone.utc) - timedelta(seconds=5)
        profile = make_profile(balance_cents=50, last_auto_recharge_attempt=recent, **ENABLED)

        result = await service.handle_auto_recharge(profile, 50)

        assert result.triggered is False
        charge_ok.assert_not_called()

    @pytest.mark.asyncio
    async def test_cooldown_elapsed_allows_attempt(self, service, charge_ok):
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        profile = make_profile(balance_cents=50, last_auto_recharge_attempt=old, **ENABLED)

        result = await service.handle_auto_recharge(profile, 50)

        assert result.triggered is True
        charge_ok.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_charge_once(self, service, charge_ok):
        profile = make_profile(balance_cents=50, **ENABLED)

        results = await asyncio.gather(*[service.handle_auto_recharge(profile, 50) for _ in range(4)])

        assert sum(r.triggered for r in results) == 1
        charge_ok.assert_called_once()
        assert get_profile(TEST_USER).balance_cents == 1_050

    @pytest.mark.asyncio
    async def test_already_credited_by_webhook(self, service, charge_ok):
        profile = make_profile(balance_cents=50, **ENABLED)
        ledger_service.credit_funds(TEST_USER, 1_000, "auto_recharge", stripe_intent_id="pi_auto_1")

        result = await service.handle_auto_recharge(profile, 50)

        assert result.triggered is False
        assert get_profile(TEST_USER).balance_cents == 1_050


# ---------------------------------------------------------------------------
# trigger_manual_recharge
# ---------------------------------------------------------------------------

class TestManualRecharge:
    @pytest.mark.asyncio
    async def test_manual_charge_ignores_threshold(self, service, charge_ok):
        profile = make_profile(balance_cents=5_000, **ENABLED)
        result = await service.trigger_manual_recharge(profile)
        assert result.triggered is True
        assert result.new_balance == 6_000

    @pytest.mark.asyncio
    async def test_manual_charge_requires_amount(self, service, charge_ok):
        profile = make_profile(balance_cents=50, **{**ENABLED, "auto_recharge_amount_cents": None})
        result = await service.trigger_manual_recharge(profile)
        assert result.triggered is False
        charge_ok.assert_not_called()


# ---------------------------------------------------------------------------
# Off-session charge
# ---------------------------------------------------------------------------

class TestOffSessionCharge:
    def test_idempotency_key_is_passed_to_stripe(self, mocker, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
        create = mocker.patch("stripe.PaymentIntent.create")
        create.return_value = mocker.Mock(id="pi_1", status="succeeded")

        result = payment_service.charge_off_session(TEST_USER, "cus_123", "pm_123", 1_000, "auto_recharge:k1")

        assert result.succeeded is True
        assert create.call_args.kwargs["idempotency_key"] == "auto_recharge:k1"
        assert create.call_args.kwargs["off_session"] is True

    def test_key_is_stable_per_claim(self):
        claimed = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        naive = claimed.replace(tzinfo=None)

        assert attempt_idempotency_key(TEST_USER, claimed) == attempt_idempotency_key(TEST_USER, naive)
        assert attempt_idempotency_key(TEST_USER, claimed) != attempt_idempotency_key(
            TEST_USER, claimed + timedelta(microseconds=1)
        )

    @pytest.mark.asyncio
    async def test_separate_attempts_use_separate_keys(self, service, charge_ok):
        profile = make_profile(balance_cents=50, **ENABLED)
        await service.trigger_manual_recharge(profile)
        await service.trigger_manual_recharge(get_profile(TEST_USER))

        keys = [c.args[4] for c in charge_ok.call_args_list]
        assert len(keys) == 2
        assert keys[0] != keys[1]
