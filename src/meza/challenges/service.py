"""Challenge queries: lookups, listings and per-user statistics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.time_utils import ensure_utc, now_utc
from meza.db.models import Challenge
from meza.errors import NotFound, ValidationError

VALID_PERIODS = ("all", "week", "month", "year")


async def get_challenge_by_id(db: AsyncSession, challenge_id: str) -> Challenge:
    """Unscoped lookup, for system callers (sweeps) and ownership checks."""
    challenge = await db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFound("Challenge", challenge_id)
    return challenge


async def get_challenge(db: AsyncSession, user_id: str, challenge_id: str) -> Challenge:
    """Owner-scoped lookup. Foreign challenges are reported as not found."""
    result = await db.execute(
        select(Challenge).where(Challenge.id == challenge_id, Challenge.user_id == user_id)
    )
    challenge = result.scalar_one_or_none()
    if challenge is None:
        raise NotFound("Challenge", challenge_id)
    return challenge


async def list_challenges(
    db: AsyncSession,
    user_id: str,
    status: str | None = None,
    limit: int | None = None,
) -> list[Challenge]:
    """User's challenges, newest first."""
    query = select(Challenge).where(Challenge.user_id == user_id)
    if status:
        query = query.where(Challenge.status == status)
    query = query.order_by(Challenge.created_at.desc())
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_active_challenge_for(db: AsyncSession, user_id: str) -> Challenge | None:
    """The user's single active challenge, if any."""
    result = await db.execute(
        select(Challenge).where(Challenge.user_id == user_id, Challenge.status == "active").limit(1)
    )
    return result.scalar_one_or_none()


def period_start(period: str, now: datetime) -> datetime | None:
    """Lower bound on ``created_at`` for a stats period (None for all time)."""
    if period == "all":
        return None
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if period == "year":
        return datetime(now.year, 1, 1, tzinfo=timezone.utc)
    raise ValidationError("period", f"must be one of {', '.join(VALID_PERIODS)}")


def compute_streaks(outcomes: list[str]) -> tuple[int, int]:
    """(best, current) runs of 'completed' in chronologically ordered terminal outcomes."""
    best = run = 0
    for outcome in outcomes:
        if outcome == "completed":
            run += 1
            best = max(best, run)
        else:
            run = 0
    return best, run


async def get_stats(
    db: AsyncSession,
    user_id: str,
    period: str = "all",
    now: datetime | None = None,
) -> dict[str, object]:
    """Aggregate a user's challenge history."""
    now = ensure_utc(now or now_utc())
    start = period_start(period, now)

    query = select(Challenge).where(Challenge.user_id == user_id)
    if start is not None:
        query = query.where(Challenge.created_at >= start)
    result = await db.execute(query)
    challenges = list(result.scalars().all())

    finished = sorted(
        (c for c in challenges if c.status in ("completed", "failed")),
        key=lambda c: ensure_utc(c.completed_at or c.created_at or now),
    )
    completed = [c for c in finished if c.status == "completed"]
    failed = [c for c in finished if c.status == "failed"]
    distances = [c.distance_to_target for c in completed if c.distance_to_target is not None]
    best_streak, current_streak = compute_streaks([c.status for c in finished])

    return {
        "period": period,
        "total_challenges": len(challenges),
        "completed": len(completed),
        "failed": len(failed),
        "success_rate": round(len(completed) / len(finished) * 100, 1) if finished else 0.0,
        "total_penalty": sum(c.penalty_amount for c in failed),
        "average_penalty": round(sum(c.penalty_amount for c in failed) / len(failed), 1) if failed else 0.0,
        "best_streak": best_streak,
        "current_streak": current_streak,
        "average_distance_to_target": round(sum(distances) / len(distances), 1) if distances else None,
    }
