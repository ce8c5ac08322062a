"""Unit tests for penalty charge providers."""

from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from meza.config import get_settings
from meza.errors import ChargeError
from meza.payments.provider import (
    LogOnlyProvider,
    StripeProvider,
    _create_provider,
    configuration_problem,
    get_payment_provider,
    reset_payment_provider,
)


def _stripe(handler) -> StripeProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StripeProvider(secret_key="sk_test_123", api_base="https://stripe.test", client=client)


async def _charge(provider) -> object:
    return await provider.charge_penalty(
        customer_id="cus_1",
        payment_method_id="pm_1",
        amount=500,
        currency="jpy",
        idempotency_key="challenge-1",
        metadata={"challenge_id": "challenge-1", "user_id": "user-1"},
    )


class TestStripeProvider:
    @pytest.mark.asyncio
    async def test_creates_confirmed_off_session_intent(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "pi_123", "status": "succeeded"})

        reference = await _charge(_stripe(handler))

        assert reference.id == "pi_123"
        assert reference.succeeded
        request = seen[0]
        assert request.url == "https://stripe.test/v1/payment_intents"
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert request.headers["Idempotency-Key"] == "challenge-1"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["amount"] == "500"
        assert form["currency"] == "jpy"
        assert form["confirm"] == "true"
        assert form["off_session"] == "true"
        assert form["metadata[challenge_id]"] == "challenge-1"

    @pytest.mark.asyncio
    async def test_card_decline_raises_with_decline_code(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(402, json={"error": {
                "code": "card_declined", "decline_code": "insufficient_funds", "message": "Your card has insufficient funds.",
            }})

        with pytest.raises(ChargeError) as exc_info:
            await _charge(_stripe(handler))
        assert exc_info.value.code == "insufficient_funds"
        assert "insufficient funds" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_without_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream unavailable")

        with pytest.raises(ChargeError) as exc_info:
            await _charge(_stripe(handler))
        assert exc_info.value.code == "http_503"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ChargeError) as exc_info:
            await _charge(_stripe(handler))
        assert exc_info.value.code == "network_error"

    @pytest.mark.asyncio
    async def test_requires_action_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "pi_3ds", "status": "requires_action"})

        reference = await _charge(_stripe(handler))
        assert reference.status == "requires_action"
        assert not reference.succeeded

    @pytest.mark.asyncio
    async def test_missing_secret_key(self):
        with pytest.raises(ChargeError) as exc_info:
            await _charge(StripeProvider(secret_key=""))
        assert exc_info.value.code == "not_configured"


class TestLogOnlyProvider:
    @pytest.mark.asyncio
    async def test_always_succeeds(self):
        reference = await _charge(LogOnlyProvider())
        assert reference.id == "log_challenge-1"
        assert reference.succeeded


class TestProviderSelection:
    def test_default_is_log_provider(self):
        reset_payment_provider()
        try:
            assert isinstance(get_payment_provider(), LogOnlyProvider)
            assert get_payment_provider() is get_payment_provider()
        finally:
            reset_payment_provider()

    def test_stripe_selected_from_settings(self, monkeypatch):
        monkeypatch.setenv("MEZA_PAYMENT_PROVIDER", "stripe")
        monkeypatch.setenv("MEZA_STRIPE_SECRET_KEY", "sk_test_env")
        get_settings.cache_clear()
        try:
            provider = _create_provider()
            assert isinstance(provider, StripeProvider)
            assert provider.secret_key == "sk_test_env"
        finally:
            get_settings.cache_clear()


class TestConfigurationProblem:
    def _check(self, monkeypatch, **env: str) -> str | None:
        for key, value in env.items():
            monkeypatch.setenv(f"MEZA_{key.upper()}", value)
        get_settings.cache_clear()
        try:
            return configuration_problem()
        finally:
            get_settings.cache_clear()

    def test_log_provider_needs_nothing(self, monkeypatch):
        assert self._check(monkeypatch, payment_provider="log") is None

    def test_stripe_without_secret_key(self, monkeypatch):
        assert self._check(monkeypatch, payment_provider="stripe", stripe_secret_key="") == (
            "stripe secret key is not set"
        )

    def test_stripe_without_webhook_secret(self, monkeypatch):
        problem = self._check(
            monkeypatch, payment_provider="stripe", stripe_secret_key="sk_test", stripe_webhook_secret="",
        )
        assert problem == "stripe webhook secret is not set"

    def test_stripe_fully_configured(self, monkeypatch):
        problem = self._check(
            monkeypatch, payment_provider="stripe", stripe_secret_key="sk_test", stripe_webhook_secret="whsec_test",
        )
        assert problem is None

    def test_unknown_provider(self, monkeypatch):
        assert self._check(monkeypatch, payment_provider="paypal") == "unsupported payment provider 'paypal'"
