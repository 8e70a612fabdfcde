"""
Account endpoint tests: profile bootstrap, API keys, auto-recharge settings,
spending limit and favorites. Authenticated with an HS256 session JWT.
"""

import jwt
import pytest

from conftest import TEST_USER, account_token, bearer, make_profile
from toolshub.config import settings
from toolshub.services.payment_service import ChargeResult, payment_service
from toolshub.services.profile_service import get_profile


class TestAccountAuth:
    def test_missing_token(self, client):
        resp = client.get("/api/account/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    def test_bad_signature(self, client):
        token = jwt.encode(
            {"sub": TEST_USER, "aud": settings.jwt_audience},
            "some-other-secret-that-is-also-long-enough",
            algorithm="HS256",
        )
        assert client.get("/api/account/profile", headers=bearer(token)).status_code == 401

    def test_wrong_audience(self, client):
        token = jwt.encode({"sub": TEST_USER, "aud": "other"}, settings.jwt_secret, algorithm="HS256")
        assert client.get("/api/account/profile", headers=bearer(token)).status_code == 401

    def test_api_key_is_not_a_session(self, client):
        resp = client.get("/api/account/profile", headers=bearer(settings.sandbox_api_key))
        assert resp.status_code == 401


class TestEnsureProfile:
    def test_first_call_creates_profile_and_key(self, client, account_headers):
        body = client.post("/api/account/ensure-profile", headers=account_headers).json()["data"]

        assert body["profileCreated"] is True
        assert body["defaultKey"]["apiKey"].startswith("pk_")
        assert get_profile(TEST_USER).balance_cents == 0

    def test_second_call_is_a_no_op(self, client, account_headers):
        client.post("/api/account/ensure-profile", headers=account_headers)
        body = client.post("/api/account/ensure-profile", headers=account_headers).json()["data"]

        assert body == {"profileCreated": False, "defaultKey": None}
        keys = client.get("/api/account/api-keys", headers=account_headers).json()["data"]["keys"]
        assert len(keys) == 1

    def test_issued_key_works_for_tools(self, client, account_headers):
        body = client.post("/api/account/ensure-profile", headers=account_headers).json()["data"]
        resp = client.post(
            "/api/tools/word-counter",
            json={"text": "one two"},
            headers=bearer(body["defaultKey"]["apiKey"]),
        )
        # New profiles have no balance
        assert resp.status_code == 402


class TestProfile:
    def test_profile_view(self, client, account_headers):
        make_profile(balance_cents=1_234, default_payment_method_id="pm_1")
        body = client.get("/api/account/profile", headers=account_headers).json()["data"]

        assert body["userId"] == TEST_USER
        assert body["balance"] == 1_234
        assert body["hasPaymentMethod"] is True
        assert body["monthlyCap"] == settings.monthly_cap_free_cents
        assert body["transactions"] == []

    def test_missing_profile(self, client, account_headers):
        resp = client.get("/api/account/profile", headers=account_headers)
        assert resp.status_code == 404


class TestApiKeys:
    def test_create_list_revoke(self, client, account_headers):
        created = client.post("/api/account/api-keys", json={"label": "ci"}, headers=account_headers)
        assert created.status_code == 201
        key = created.json()["data"]
        assert key["label"] == "ci"
        assert key["prefix"] == key["apiKey"][:10] + "..."

        listed = client.get("/api/account/api-keys", headers=account_headers).json()["data"]["keys"]
        assert [k["id"] for k in listed] == [key["id"]]
        assert "apiKey" not in listed[0]

        revoked = client.delete(f"/api/account/api-keys/{key['id']}", headers=account_headers)
        assert revoked.status_code == 200
        assert client.get("/api/account/api-keys", headers=account_headers).json()["data"]["keys"] == []

    def test_revoked_key_stops_working(self, client, account_headers):
        make_profile(balance_cents=50)
        key = client.post("/api/account/api-keys", json={}, headers=account_headers).json()["data"]
        assert client.post(
            "/api/tools/word-counter", json={"text": "a"}, headers=bearer(key["apiKey"])
        ).status_code == 200

        client.delete(f"/api/account/api-keys/{key['id']}", headers=account_headers)

        resp = client.post("/api/tools/word-counter", json={"text": "a"}, headers=bearer(key["apiKey"]))
        assert resp.status_code == 401

    def test_cannot_revoke_someone_elses_key(self, client, account_headers):
        key = client.post("/api/account/api-keys", json={}, headers=account_headers).json()["data"]
        other = bearer(account_token("user-2"))
        assert client.delete(f"/api/account/api-keys/{key['id']}", headers=other).status_code == 404

    def test_revoke_unknown(self, client, account_headers):
        assert client.delete("/api/account/api-keys/999", headers=account_headers).status_code == 404


class TestAutoRechargeSettings:
    def test_enable_and_read_back(self, client, account_headers):
        make_profile(balance_cents=0)
        resp = client.put(
            "/api/account/auto-recharge",
            json={"enabled": True, "threshold": 200, "amount": 2_000},
            headers=account_headers,
        )
        assert resp.status_code == 200
        status = client.get("/api/account/auto-recharge", headers=account_headers).json()["data"]
        assert status["enabled"] is True
        assert status["threshold"] == 200
        assert status["amount"] == 2_000
        assert status["hasPaymentMethod"] is False

    def test_amount_below_minimum(self, client, account_headers):
        make_profile(balance_cents=0)
        resp = client.put(
            "/api/account/auto-recharge",
            json={"enabled": True, "threshold": 200, "amount": 100},
            headers=account_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_enable_requires_threshold(self, client, account_headers):
        make_profile(balance_cents=0)
        resp = client.put("/api/account/auto-recharge", json={"enabled": True}, headers=account_headers)
        assert resp.status_code == 400

    def test_no_profile(self, client, account_headers):
        resp = client.put("/api/account/auto-recharge", json={"enabled": False}, headers=account_headers)
        assert resp.status_code == 404


class TestManualCharge:
    def test_requires_enabled(self, client, account_headers):
        make_profile(balance_cents=0)
        resp = client.post("/api/account/auto-recharge/charge", headers=account_headers)
        assert resp.status_code == 400

    def test_requires_saved_card(self, client, account_headers):
        make_profile(
            balance_cents=0,
            auto_recharge_enabled=True,
            auto_recharge_threshold_cents=100,
            auto_recharge_amount_cents=1_000,
        )
        resp = client.post("/api/account/auto-recharge/charge", headers=account_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"needsCheckout": True}

    def test_success(self, client, account_headers, mocker):
        mocker.patch.object(
            payment_service,
            "charge_off_session",
            return_value=ChargeResult(succeeded=True, intent_id="pi_manual", status="succeeded"),
        )
        make_profile(
            balance_cents=25,
            auto_recharge_enabled=True,
            auto_recharge_threshold_cents=100,
            auto_recharge_amount_cents=1_000,
            stripe_customer_id="cus_1",
            default_payment_method_id="pm_1",
        )
        resp = client.post("/api/account/auto-recharge/charge", headers=account_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["newBalance"] == 1_025

    def test_decline(self, client, account_headers, mocker):
        mocker.patch.object(
            payment_service,
            "charge_off_session",
            return_value=ChargeResult(succeeded=False, error="Your card was declined."),
        )
        make_profile(
            balance_cents=25,
            auto_recharge_enabled=True,
            auto_recharge_threshold_cents=100,
            auto_recharge_amount_cents=1_000,
            stripe_customer_id="cus_1",
            default_payment_method_id="pm_1",
        )
        resp = client.post("/api/account/auto-recharge/charge", headers=account_headers)

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Your card was declined."
        assert get_profile(TEST_USER).balance_cents == 25


class TestSpendingLimit:
    def test_set_and_clear(self, client, account_headers):
        make_profile(balance_cents=0)

        body = client.put("/api/account/spending-limit", json={"limit": 500}, headers=account_headers).json()
        assert body["data"]["monthlySpendingLimit"] == 500
        assert body["data"]["monthlyCap"] == 500

        body = client.put("/api/account/spending-limit", json={"limit": None}, headers=account_headers).json()
        assert body["data"]["monthlySpendingLimit"] is None
        assert body["data"]["monthlyCap"] == settings.monthly_cap_free_cents

    def test_negative_rejected(self, client, account_headers):
        make_profile(balance_cents=0)
        resp = client.put("/api/account/spending-limit", json={"limit": -1}, headers=account_headers)
        assert resp.status_code == 400


class TestFavorites:
    def test_add_list_remove(self, client, account_headers):
        added = client.post("/api/favorites", json={"toolId": "word-counter"}, headers=account_headers)
        assert added.status_code == 201
        assert added.json()["data"]["favorite"]["toolId"] == "word-counter"

        listed = client.get("/api/favorites", headers=account_headers).json()["data"]
        assert listed == {"favorites": ["word-counter"]}

        assert client.delete("/api/favorites/word-counter", headers=account_headers).status_code == 200
        assert client.get("/api/favorites", headers=account_headers).json()["data"]["favorites"] == []

    def test_duplicate_is_conflict(self, client, account_headers):
        client.post("/api/favorites", json={"toolId": "word-counter"}, headers=account_headers)
        resp = client.post("/api/favorites", json={"toolId": "word-counter"}, headers=account_headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"

    def test_remove_missing(self, client, account_headers):
        assert client.delete("/api/favorites/word-counter", headers=account_headers).status_code == 404

    @pytest.mark.parametrize("body", [{}, {"toolId": ""}])
    def test_invalid_body(self, client, account_headers, body):
        assert client.post("/api/favorites", json=body, headers=account_headers).status_code == 400
