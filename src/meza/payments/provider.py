"""
Penalty charge providers.

Supports Stripe (off-session PaymentIntent) and a log-only provider for
development. Provider is selected via configuration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from meza.config import get_settings
from meza.errors import ChargeError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChargeReference:
    """Provider-side handle for a charge attempt."""

    id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class BasePaymentProvider(ABC):
    """Abstract base class for penalty charge providers."""

    @abstractmethod
    async def charge_penalty(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> ChargeReference:
        """Charge a saved payment method. Raises ChargeError on failure."""
        ...


class StripeProvider(BasePaymentProvider):
    """Charge saved cards through the Stripe PaymentIntents REST API."""

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def charge_penalty(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> ChargeReference:
        """Create and confirm an off-session PaymentIntent.

        ``amount`` is in the currency's smallest unit (JPY is zero-decimal).
        The idempotency key makes repeated attempts for the same challenge
        return the original intent instead of charging twice.
        """
        if not self.secret_key:
            raise ChargeError("not_configured", "Stripe secret key is not set")

        form: dict[str, Any] = {
            "amount": str(amount),
            "currency": currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "confirm": "true",
            "off_session": "true",
            "description": "Meza challenge penalty",
        }
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = value

        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Idempotency-Key": idempotency_key,
        }
        url = f"{self.api_base}/v1/payment_intents"

        try:
            if self._client is not None:
                response = await self._client.post(url, data=form, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, data=form, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning("stripe_request_failed", idempotency_key=idempotency_key, error=str(e))
            raise ChargeError("network_error", str(e)) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            error = payload.get("error", {}) if isinstance(payload, dict) else {}
            code = error.get("decline_code") or error.get("code") or f"http_{response.status_code}"
            logger.warning("stripe_charge_declined", idempotency_key=idempotency_key, code=code)
            raise ChargeError(code, error.get("message", "Stripe request failed"))

        if not isinstance(payload, dict) or "id" not in payload:
            raise ChargeError("invalid_response", f"Unexpected Stripe response ({response.status_code})")
        reference = ChargeReference(id=payload["id"], status=payload.get("status", "unknown"))
        logger.info(
            "stripe_charge_created",
            payment_intent=reference.id,
            status=reference.status,
            amount=amount,
            currency=currency,
        )
        return reference


class LogOnlyProvider(BasePaymentProvider):
    """Development provider: records the charge in the log and reports success."""

    async def charge_penalty(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> ChargeReference:
        logger.info(
            "penalty_charge_logged",
            customer_id=customer_id,
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key,
        )
        return ChargeReference(id=f"log_{idempotency_key}", status="succeeded")


def _create_provider() -> BasePaymentProvider:
    """Create payment provider based on configuration."""
    settings = get_settings()
    provider_name = settings.payment_provider.lower()

    if provider_name == "stripe":
        return StripeProvider(
            secret_key=settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            timeout=settings.payment_timeout_seconds,
        )
    if provider_name == "log":
        return LogOnlyProvider()
    msg = f"Unsupported payment provider: {provider_name}"
    raise ValueError(msg)


# Module-level singleton
_provider: BasePaymentProvider | None = None


def get_payment_provider() -> BasePaymentProvider:
    """Get or create the payment provider singleton."""
    global _provider  # noqa: PLW0603
    if _provider is None:
        _provider = _create_provider()
    return _provider


def reset_payment_provider() -> None:
    """Reset the payment provider singleton (for testing)."""
    global _provider  # noqa: PLW0603
    _provider = None


def configuration_problem() -> str | None:
    """Why the configured provider cannot take payments, or None when it can."""
    settings = get_settings()
    provider_name = settings.payment_provider.lower()
    if provider_name == "log":
        return None
    if provider_name != "stripe":
        return f"unsupported payment provider {provider_name!r}"
    if not settings.stripe_secret_key:
        return "stripe secret key is not set"
    if not settings.stripe_webhook_secret:
        return "stripe webhook secret is not set"
    return None
