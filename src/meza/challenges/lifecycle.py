"""Challenge lifecycle engine: state machine and transitions.

State progression: pending -> active -> completed | failed
Transitions are validated, and every write re-checks its guard in the UPDATE's
WHERE clause, so two racing callers cannot both move the same challenge.
Notifications and penalty charges run only after the transition committed;
their failures are logged and reported on the result, never rolled back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.geo import Coordinate, distance
from meza.challenges.service import get_active_challenge_for, get_challenge, get_challenge_by_id
from meza.challenges.time_utils import Clock, ensure_utc, is_expired, now_utc, seconds_remaining
from meza.challenges.validator import validate_challenge_input
from meza.config import Settings
from meza.db.models import Challenge
from meza.notifications.service import cancel_pending_reminders
from meza.errors import (
    ArrivalOutOfRange,
    ChargeError,
    DispatchError,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from meza.notifications.dispatcher import NotificationDispatcher
from meza.payments.provider import BasePaymentProvider
from meza.payments.service import charge_challenge_penalty
from meza.users.service import find_user_settings

logger = structlog.get_logger()


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_TRANSITIONS: dict[str, list[str]] = {
    ChallengeStatus.PENDING: [ChallengeStatus.ACTIVE],
    ChallengeStatus.ACTIVE: [ChallengeStatus.COMPLETED, ChallengeStatus.FAILED],
    ChallengeStatus.COMPLETED: [],
    ChallengeStatus.FAILED: [],
}

TERMINAL_STATES = frozenset({ChallengeStatus.COMPLETED, ChallengeStatus.FAILED})

# Fields a pending challenge may still change.
EDITABLE_FIELDS = (
    "target_time",
    "penalty_amount",
    "home_latitude",
    "home_longitude",
    "home_address",
    "target_latitude",
    "target_longitude",
    "target_address",
    "wake_up_location_lat",
    "wake_up_location_lng",
    "wake_up_location_address",
)


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises InvalidTransition if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransition(
            f"Invalid transition: {current_status} -> {ChallengeStatus(target_status).value}. "
            f"Valid transitions: {[s.value for s in valid]}",
            current_status=current_status,
        )


@dataclass
class TransitionResult:
    """Outcome of a transition plus the fate of its side effects."""

    challenge: Challenge
    notified: bool = False
    charge_requested: bool = False
    charge_succeeded: bool | None = None
    charge_error: str | None = None

    @property
    def degraded(self) -> bool:
        return not self.notified or self.charge_succeeded is False


@dataclass
class SweepResult:
    expired: int = 0
    skipped: int = 0
    charge_failures: int = 0


def _local_hhmm(instant: datetime, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ensure_utc(instant).strftime("%H:%M UTC")
    return ensure_utc(instant).astimezone(tz).strftime("%H:%M")


class ChallengeLifecycle:
    """Drives challenges through their states.

    The database session is passed per call; the payment provider, the
    notification dispatcher and the clock are fixed at construction.
    """

    def __init__(
        self,
        payments: BasePaymentProvider,
        notifier: NotificationDispatcher | None = None,
        *,
        arrival_radius_m: float = 100.0,
        currency: str = "jpy",
        payment_timeout: float = 15.0,
        notification_timeout: float = 5.0,
        default_timezone: str = "Asia/Tokyo",
        clock: Clock = now_utc,
    ) -> None:
        self._payments = payments
        self._notifier = notifier
        self.arrival_radius_m = arrival_radius_m
        self._currency = currency
        self._payment_timeout = payment_timeout
        self._notification_timeout = notification_timeout
        self._default_timezone = default_timezone
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        payments: BasePaymentProvider,
        notifier: NotificationDispatcher | None = None,
        clock: Clock = now_utc,
    ) -> ChallengeLifecycle:
        return cls(
            payments,
            notifier,
            arrival_radius_m=settings.arrival_radius_meters,
            currency=settings.penalty_currency,
            payment_timeout=settings.payment_timeout_seconds,
            notification_timeout=settings.notification_timeout_seconds,
            default_timezone=settings.default_timezone,
            clock=clock,
        )

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else self._clock()

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _notify(
        self,
        user_id: str,
        title: str,
        body: str,
        type_: str,
        scheduled_for: datetime | None = None,
        challenge_id: str | None = None,
    ) -> bool:
        """Best-effort notification. Returns False on failure or timeout."""
        if self._notifier is None:
            return False
        try:
            await asyncio.wait_for(
                self._notifier.notify(
                    user_id, title, body, type_, scheduled_for=scheduled_for, challenge_id=challenge_id,
                ),
                timeout=self._notification_timeout,
            )
        except (DispatchError, TimeoutError) as e:
            logger.warning("notification_failed", user_id=user_id, type=type_, error=str(e) or type(e).__name__)
            return False
        return True

    async def _timezone_for(self, db: AsyncSession, user_id: str) -> str:
        settings = await find_user_settings(db, user_id)
        return settings.timezone if settings is not None else self._default_timezone

    # ------------------------------------------------------------------
    # Pending-state operations
    # ------------------------------------------------------------------

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        data: Mapping[str, Any],
        now: datetime | None = None,
    ) -> TransitionResult:
        """Validate input and persist a new pending challenge."""
        now = self._now(now)
        valid = validate_challenge_input(data)

        challenge = Challenge(
            user_id=user_id,
            status=ChallengeStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            **valid.as_dict(),
        )
        db.add(challenge)
        await db.commit()
        logger.info("challenge_created", challenge_id=challenge.id, user_id=user_id)

        notified = await self._notify(
            user_id,
            "Challenge created",
            f"Wake-up challenge for {valid.target_time} is ready. Penalty: {valid.penalty_amount}",
            "challenge",
            challenge_id=challenge.id,
        )
        return TransitionResult(challenge=challenge, notified=notified)

    async def update(
        self,
        db: AsyncSession,
        user_id: str,
        challenge_id: str,
        changes: Mapping[str, Any],
        now: datetime | None = None,
    ) -> Challenge:
        """Edit a pending challenge. The merged record is re-validated."""
        now = self._now(now)
        challenge = await get_challenge(db, user_id, challenge_id)
        if challenge.status != ChallengeStatus.PENDING:
            raise InvalidTransition("Only pending challenges can be edited", challenge.status)

        merged = {field: getattr(challenge, field) for field in EDITABLE_FIELDS}
        merged.update({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})
        valid = validate_challenge_input(merged)

        result = await db.execute(
            update(Challenge)
            .execution_options(synchronize_session=False)
            .where(Challenge.id == challenge.id, Challenge.status == ChallengeStatus.PENDING.value)
            .values(updated_at=now, **valid.as_dict())
        )
        if result.rowcount == 0:
            await db.rollback()
            raise InvalidTransition("Challenge is no longer pending")
        await db.commit()
        await db.refresh(challenge)
        logger.info("challenge_updated", challenge_id=challenge.id)
        return challenge

    async def delete(self, db: AsyncSession, user_id: str, challenge_id: str) -> None:
        """Remove a pending challenge."""
        challenge = await get_challenge(db, user_id, challenge_id)
        if challenge.status != ChallengeStatus.PENDING:
            raise InvalidTransition("Only pending challenges can be deleted", challenge.status)

        result = await db.execute(
            delete(Challenge)
            .execution_options(synchronize_session=False)
            .where(
                Challenge.id == challenge_id,
                Challenge.user_id == user_id,
                Challenge.status == ChallengeStatus.PENDING.value,
            )
        )
        if result.rowcount == 0:
            await db.rollback()
            raise InvalidTransition("Challenge is no longer pending")
        await db.commit()
        logger.info("challenge_deleted", challenge_id=challenge_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(
        self,
        db: AsyncSession,
        user_id: str,
        challenge_id: str,
        target_datetime: datetime,
        now: datetime | None = None,
    ) -> TransitionResult:
        """pending -> active, with the deadline at ``target_datetime``."""
        now = self._now(now)
        challenge = await get_challenge_by_id(db, challenge_id)
        if challenge.user_id != user_id:
            raise InvalidTransition("Challenge is not owned by the caller")
        validate_transition(challenge.status, ChallengeStatus.ACTIVE)

        ends_at = ensure_utc(target_datetime)
        if ends_at <= now:
            raise ValidationError("target_datetime", "must be in the future")

        if await get_active_challenge_for(db, user_id) is not None:
            raise InvalidTransition("User already has an active challenge", challenge.status)

        try:
            result = await db.execute(
                update(Challenge)
                .execution_options(synchronize_session=False)
                .where(Challenge.id == challenge.id, Challenge.status == ChallengeStatus.PENDING.value)
                .values(status=ChallengeStatus.ACTIVE.value, started_at=now, ends_at=ends_at, updated_at=now)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise InvalidTransition("Challenge is no longer pending")
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise InvalidTransition("User already has an active challenge") from None
        await db.refresh(challenge)
        logger.info("challenge_started", challenge_id=challenge.id, user_id=user_id, ends_at=ends_at.isoformat())

        tz_name = await self._timezone_for(db, user_id)
        notified = await self._notify(
            user_id,
            "Challenge started",
            f"Reach {challenge.target_address or 'your target'} by {_local_hhmm(ends_at, tz_name)}.",
            "challenge",
            challenge_id=challenge.id,
        )

        user_settings = await find_user_settings(db, user_id)
        reminder_enabled = user_settings.reminder_enabled if user_settings else True
        minutes_before = user_settings.reminder_minutes_before if user_settings else 30
        if reminder_enabled and minutes_before > 0:
            remind_at = ends_at - timedelta(minutes=minutes_before)
            if remind_at > now:
                reminded = await self._notify(
                    user_id,
                    "Challenge reminder",
                    f"{minutes_before} minutes left to reach your target.",
                    "reminder",
                    scheduled_for=remind_at,
                    challenge_id=challenge.id,
                )
                notified = notified and reminded

        return TransitionResult(challenge=challenge, notified=notified)

    async def confirm_arrival(
        self,
        db: AsyncSession,
        user_id: str,
        challenge_id: str,
        location: Coordinate,
        address: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """active -> completed, if ``location`` is within the arrival radius before the deadline."""
        now = self._now(now)
        challenge = await get_challenge(db, user_id, challenge_id)
        validate_transition(challenge.status, ChallengeStatus.COMPLETED)

        if challenge.ends_at is None or is_expired(challenge.ends_at, now):
            raise InvalidTransition("Deadline has passed", challenge.status)

        meters = distance(location, Coordinate(challenge.target_latitude, challenge.target_longitude))
        if meters > self.arrival_radius_m:
            logger.info("arrival_out_of_range", challenge_id=challenge.id, distance=round(meters, 1))
            raise ArrivalOutOfRange(meters, self.arrival_radius_m)

        result = await db.execute(
            update(Challenge)
            .execution_options(synchronize_session=False)
            .where(
                Challenge.id == challenge.id,
                Challenge.status == ChallengeStatus.ACTIVE.value,
                Challenge.ends_at >= now,
            )
            .values(
                status=ChallengeStatus.COMPLETED.value,
                completed_at=now,
                completion_lat=location.latitude,
                completion_lng=location.longitude,
                completion_address=address,
                distance_to_target=meters,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            await db.rollback()
            raise InvalidTransition("Challenge is no longer active before its deadline")
        await cancel_pending_reminders(db, challenge.id)
        await db.commit()
        await db.refresh(challenge)
        logger.info("challenge_completed", challenge_id=challenge.id, distance=round(meters, 1))

        notified = await self._notify(
            user_id,
            "Challenge completed",
            f"You arrived {round(meters)}m from your target. No penalty charged.",
            "challenge",
            challenge_id=challenge.id,
        )
        return TransitionResult(challenge=challenge, notified=notified)

    async def expire(
        self,
        db: AsyncSession,
        challenge_id: str,
        now: datetime | None = None,
        user_id: str | None = None,
    ) -> TransitionResult:
        """active -> failed once the deadline has passed; requests the penalty charge.

        ``user_id`` scopes the lookup for owner-triggered checks; the sweep
        passes None.
        """
        now = self._now(now)
        challenge = await get_challenge_by_id(db, challenge_id)
        if user_id is not None and challenge.user_id != user_id:
            raise NotFound("Challenge", challenge_id)
        validate_transition(challenge.status, ChallengeStatus.FAILED)

        if challenge.ends_at is None or not is_expired(challenge.ends_at, now):
            raise InvalidTransition("Deadline has not passed yet", challenge.status)

        result = await db.execute(
            update(Challenge)
            .execution_options(synchronize_session=False)
            .where(
                Challenge.id == challenge.id,
                Challenge.status == ChallengeStatus.ACTIVE.value,
                Challenge.ends_at < now,
            )
            .values(status=ChallengeStatus.FAILED.value, completed_at=now, updated_at=now)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise InvalidTransition("Challenge is no longer active")
        await cancel_pending_reminders(db, challenge.id)
        await db.commit()
        await db.refresh(challenge)
        logger.info("challenge_failed", challenge_id=challenge.id, user_id=challenge.user_id)

        outcome = TransitionResult(challenge=challenge, charge_requested=True)
        try:
            await charge_challenge_penalty(
                db,
                self._payments,
                challenge,
                currency=self._currency,
                timeout=self._payment_timeout,
                now=now,
            )
        except ChargeError as e:
            outcome.charge_succeeded = False
            outcome.charge_error = e.code
            logger.warning("penalty_charge_failed", challenge_id=challenge.id, code=e.code)
        except SQLAlchemyError as e:
            await db.rollback()
            await db.refresh(challenge)
            outcome.charge_succeeded = False
            outcome.charge_error = "ledger_error"
            logger.error("penalty_ledger_failed", challenge_id=challenge.id, error=str(e))
        else:
            outcome.charge_succeeded = True
            await db.refresh(challenge)
            logger.info("penalty_charged", challenge_id=challenge.id, amount=challenge.penalty_amount)

        notified = await self._notify(
            challenge.user_id,
            "Challenge failed",
            f"The deadline passed. A penalty of {challenge.penalty_amount} applies.",
            "challenge",
            challenge_id=challenge.id,
        )
        if outcome.charge_succeeded:
            payment_note = await self._notify(
                challenge.user_id,
                "Penalty charged",
                f"{challenge.penalty_amount} {self._currency.upper()} was charged to your card.",
                "payment",
                challenge_id=challenge.id,
            )
        else:
            payment_note = await self._notify(
                challenge.user_id,
                "Penalty payment failed",
                "We could not charge your card. Please check your payment method.",
                "payment_error",
                challenge_id=challenge.id,
            )
        outcome.notified = notified and payment_note
        return outcome

    async def sweep_expired(self, db: AsyncSession, now: datetime | None = None, limit: int = 100) -> SweepResult:
        """Expire every active challenge whose deadline has passed.

        Challenges that another caller already moved are skipped. A challenge
        whose write failed is also skipped and stays active for the next sweep.
        """
        now = self._now(now)
        result = await db.execute(
            select(Challenge.id)
            .where(Challenge.status == ChallengeStatus.ACTIVE.value, Challenge.ends_at < now)
            .order_by(Challenge.ends_at.asc())
            .limit(limit)
        )
        challenge_ids = list(result.scalars().all())

        sweep = SweepResult()
        for challenge_id in challenge_ids:
            try:
                outcome = await self.expire(db, challenge_id, now=now)
            except (InvalidTransition, NotFound):
                sweep.skipped += 1
                continue
            except SQLAlchemyError as e:
                await db.rollback()
                sweep.skipped += 1
                logger.error("sweep_expire_failed", challenge_id=challenge_id, error=str(e))
                continue
            sweep.expired += 1
            if outcome.charge_succeeded is False:
                sweep.charge_failures += 1
        return sweep

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_active_challenge_for(self, db: AsyncSession, user_id: str) -> Challenge | None:
        return await get_active_challenge_for(db, user_id)

    def time_remaining(self, challenge: Challenge, now: datetime | None = None) -> int:
        """Seconds until the deadline; 0 once passed or if never started."""
        if challenge.ends_at is None:
            return 0
        return seconds_remaining(challenge.ends_at, self._now(now))
