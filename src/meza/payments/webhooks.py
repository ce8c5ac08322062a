"""Stripe webhook verification and reconciliation.

Charges that Stripe settles asynchronously (3-D Secure, delayed declines)
are reported through ``payment_intent.*`` events. Each event moves the
matching ``payments`` row; a succeeded intent also stamps
``payment_intent_id`` on the failed challenge.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.time_utils import now_utc
from meza.db.models import Challenge, Payment, Profile

logger = structlog.get_logger()


class WebhookSignatureError(ValueError):
    """The Stripe-Signature header does not match the payload."""


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    """HMAC-SHA256 over ``{timestamp}.{payload}``, hex encoded."""
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: int | None = None,
) -> dict[str, Any]:
    """Check a ``Stripe-Signature`` header and return the decoded event.

    Raises:
        WebhookSignatureError: Missing or malformed header, no matching
            ``v1`` signature, a timestamp outside ``tolerance`` seconds, or a
            body that is not a JSON object.
    """
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("Malformed signature timestamp") from None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    expected = compute_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No signature matches the payload")

    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside the tolerance window")

    try:
        event = json.loads(payload)
    except ValueError:
        raise WebhookSignatureError("Payload is not JSON") from None
    if not isinstance(event, dict):
        raise WebhookSignatureError("Payload is not a JSON object")
    return event


async def _find_payment(db: AsyncSession, intent: dict[str, Any]) -> Payment | None:
    result = await db.execute(select(Payment).where(Payment.provider_reference == intent.get("id")))
    payment = result.scalar_one_or_none()
    if payment is not None:
        return payment

    metadata = intent.get("metadata") or {}
    challenge_id = metadata.get("challenge_id") or metadata.get("challengeId")
    if not challenge_id:
        return None
    result = await db.execute(select(Payment).where(Payment.challenge_id == challenge_id))
    return result.scalar_one_or_none()


async def _intent_succeeded(db: AsyncSession, intent: dict[str, Any], now: datetime) -> bool:
    payment = await _find_payment(db, intent)
    if payment is None:
        return False
    payment.status = "succeeded"
    payment.provider_reference = intent["id"]
    payment.error_code = None
    payment.error_message = None
    payment.updated_at = now
    await db.execute(
        update(Challenge)
        .execution_options(synchronize_session=False)
        .where(Challenge.id == payment.challenge_id, Challenge.status == "failed")
        .values(payment_intent_id=intent["id"], updated_at=now)
    )
    return True


async def _intent_failed(db: AsyncSession, intent: dict[str, Any], now: datetime, code: str) -> bool:
    payment = await _find_payment(db, intent)
    if payment is None or payment.status == "succeeded":
        return False
    error = intent.get("last_payment_error") or {}
    payment.status = "failed"
    payment.provider_reference = intent["id"]
    payment.error_code = error.get("decline_code") or error.get("code") or code
    payment.error_message = error.get("message") or f"Payment intent {code}"
    payment.updated_at = now
    return True


async def _customer_created(db: AsyncSession, customer: dict[str, Any], now: datetime) -> bool:
    metadata = customer.get("metadata") or {}
    user_id = metadata.get("user_id") or metadata.get("userId")
    if not user_id:
        return False
    profile = await db.get(Profile, user_id)
    if profile is None:
        return False
    profile.stripe_customer_id = customer["id"]
    profile.updated_at = now
    return True


async def handle_stripe_event(db: AsyncSession, event: dict[str, Any], now: datetime | None = None) -> bool:
    """Apply a verified Stripe event. Returns True if any row changed.

    Unknown event types and events for unknown payments are acknowledged
    without changes so Stripe stops redelivering them.
    """
    now = now or now_utc()
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    if not obj.get("id"):
        logger.warning("stripe_event_without_object", event_type=event_type, event_id=event.get("id"))
        return False

    if event_type == "payment_intent.succeeded":
        changed = await _intent_succeeded(db, obj, now)
    elif event_type == "payment_intent.payment_failed":
        changed = await _intent_failed(db, obj, now, "payment_failed")
    elif event_type == "payment_intent.canceled":
        changed = await _intent_failed(db, obj, now, "canceled")
    elif event_type == "customer.created":
        changed = await _customer_created(db, obj, now)
    else:
        logger.info("stripe_event_ignored", event_type=event_type, event_id=event.get("id"))
        return False

    await db.commit()
    logger.info("stripe_event_applied", event_type=event_type, object_id=obj["id"], changed=changed)
    return changed
