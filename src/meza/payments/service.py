"""Penalty payment ledger and charge orchestration.

Each failed challenge owns at most one ``payments`` row (idempotency key =
challenge id). Charge attempts update that row; a successful charge also
stamps ``payment_intent_id`` on the challenge.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.time_utils import now_utc
from meza.db.models import Challenge, Payment, Profile
from meza.errors import ChargeError
from meza.payments.provider import BasePaymentProvider

logger = structlog.get_logger()


async def get_payment_for_challenge(db: AsyncSession, challenge_id: str) -> Payment | None:
    result = await db.execute(select(Payment).where(Payment.idempotency_key == challenge_id))
    return result.scalar_one_or_none()


async def _get_or_create_payment(
    db: AsyncSession,
    challenge: Challenge,
    currency: str,
    now: datetime,
) -> Payment:
    payment = await get_payment_for_challenge(db, challenge.id)
    if payment is not None:
        return payment
    payment = Payment(
        challenge_id=challenge.id,
        user_id=challenge.user_id,
        amount=challenge.penalty_amount,
        currency=currency,
        status="pending",
        idempotency_key=challenge.id,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(payment)
    await db.flush()
    return payment


async def _attempt_charge(
    db: AsyncSession,
    provider: BasePaymentProvider,
    payment: Payment,
    provider_key: str,
    timeout: float,
    now: datetime,
) -> Payment:
    """Run one provider call and record the outcome on the payment row."""
    profile = await db.get(Profile, payment.user_id)
    try:
        if profile is None or not profile.stripe_customer_id or not profile.default_payment_method:
            raise ChargeError("no_payment_method", "No payment method available")
        reference = await asyncio.wait_for(
            provider.charge_penalty(
                customer_id=profile.stripe_customer_id,
                payment_method_id=profile.default_payment_method,
                amount=payment.amount,
                currency=payment.currency,
                idempotency_key=provider_key,
                metadata={"challenge_id": payment.challenge_id, "user_id": payment.user_id},
            ),
            timeout=timeout,
        )
    except TimeoutError as e:
        payment.status = "failed"
        payment.error_code = "timeout"
        payment.error_message = f"Payment provider did not answer within {timeout}s"
        payment.updated_at = now
        await db.commit()
        raise ChargeError("timeout", payment.error_message) from e
    except ChargeError as e:
        payment.status = "failed"
        payment.error_code = e.code
        payment.error_message = e.message
        payment.updated_at = now
        await db.commit()
        raise

    payment.provider_reference = reference.id
    payment.updated_at = now
    if reference.succeeded:
        payment.status = "succeeded"
        payment.error_code = None
        payment.error_message = None
        await db.execute(
            update(Challenge)
            .where(Challenge.id == payment.challenge_id, Challenge.status == "failed")
            .values(payment_intent_id=reference.id, updated_at=now)
        )
        await db.commit()
        return payment

    payment.status = "requires_action" if reference.status == "requires_action" else "failed"
    payment.error_code = reference.status
    await db.commit()
    raise ChargeError(reference.status, f"Payment intent ended in status {reference.status}")


async def charge_challenge_penalty(
    db: AsyncSession,
    provider: BasePaymentProvider,
    challenge: Challenge,
    *,
    currency: str,
    timeout: float,
    now: datetime | None = None,
) -> Payment:
    """Charge the penalty for a failed challenge.

    Returns the succeeded payment row. A challenge that was already charged
    returns its existing row without contacting the provider.

    Raises:
        ChargeError: If the charge could not be completed.
    """
    now = now or now_utc()
    payment = await _get_or_create_payment(db, challenge, currency, now)
    if payment.status == "succeeded":
        return payment

    logger.info("penalty_charge_requested", challenge_id=challenge.id, amount=payment.amount, currency=currency)
    return await _attempt_charge(db, provider, payment, challenge.id, timeout, now)


async def retry_failed_payments(
    db: AsyncSession,
    provider: BasePaymentProvider,
    *,
    max_retries: int,
    window_hours: int,
    timeout: float,
    limit: int = 10,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Retry recent failed charges. Returns (succeeded, failed)."""
    now = now or now_utc()
    result = await db.execute(
        select(Payment)
        .where(
            Payment.status == "failed",
            Payment.retry_count < max_retries,
            Payment.created_at >= now - timedelta(hours=window_hours),
        )
        .order_by(Payment.created_at.asc())
        .limit(limit)
    )
    payments = list(result.scalars().all())

    succeeded = failed = 0
    for payment in payments:
        payment.retry_count += 1
        # Stripe replays the first response for a reused key, so each retry needs its own.
        provider_key = f"{payment.idempotency_key}:retry:{payment.retry_count}"
        try:
            await _attempt_charge(db, provider, payment, provider_key, timeout, now)
        except ChargeError as e:
            failed += 1
            logger.warning(
                "penalty_retry_failed",
                challenge_id=payment.challenge_id,
                retry_count=payment.retry_count,
                code=e.code,
            )
        else:
            succeeded += 1
            logger.info("penalty_retry_succeeded", challenge_id=payment.challenge_id, retry_count=payment.retry_count)
    return succeeded, failed
