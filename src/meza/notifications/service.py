"""Notification persistence and queries.

Types: general, challenge, reminder, payment, payment_error
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.time_utils import now_utc
from meza.db.models import Notification
from meza.errors import NotFound

VALID_TYPES = {"general", "challenge", "reminder", "payment", "payment_error"}


async def create_notification(
    db: AsyncSession,
    user_id: str,
    title: str,
    body: str,
    type_: str = "general",
    scheduled_for: datetime | None = None,
    now: datetime | None = None,
    challenge_id: str | None = None,
) -> Notification:
    """Persist a notification (flushed, not committed)."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {sorted(VALID_TYPES)}")

    notification = Notification(
        user_id=user_id,
        challenge_id=challenge_id,
        title=title,
        body=body,
        type=type_,
        scheduled_for=scheduled_for,
        is_read=False,
        push_sent=False,
        created_at=now or now_utc(),
    )
    db.add(notification)
    await db.flush()
    return notification


async def get_notifications(
    db: AsyncSession,
    user_id: str,
    limit: int = 50,
    unread_only: bool = False,
) -> list[Notification]:
    """Get user's notifications, most recent first."""
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await db.execute(query.order_by(Notification.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_notification(db: AsyncSession, user_id: str, notification_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFound("Notification", notification_id)
    return notification


async def set_read(db: AsyncSession, user_id: str, notification_id: str, is_read: bool) -> Notification:
    """Toggle the read flag on one of the user's notifications."""
    notification = await get_notification(db, user_id, notification_id)
    notification.is_read = is_read
    await db.flush()
    return notification


async def mark_all_as_read(db: AsyncSession, user_id: str) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await db.flush()
    return result.rowcount


async def delete_notification(db: AsyncSession, user_id: str, notification_id: str) -> None:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    if result.rowcount == 0:
        raise NotFound("Notification", notification_id)
    await db.flush()


async def get_unread_count(db: AsyncSession, user_id: str) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return result.scalar_one()


async def get_due_unsent(db: AsyncSession, now: datetime, limit: int = 50) -> list[Notification]:
    """Notifications awaiting push whose scheduled time (if any) has arrived, oldest first."""
    result = await db.execute(
        select(Notification)
        .where(
            Notification.push_sent.is_(False),
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
        )
        .order_by(Notification.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def cancel_pending_reminders(db: AsyncSession, challenge_id: str) -> int:
    """Drop a challenge's reminders that have not been pushed yet (flushed, not committed)."""
    result = await db.execute(
        delete(Notification)
        .execution_options(synchronize_session=False)
        .where(
            Notification.challenge_id == challenge_id,
            Notification.type == "reminder",
            Notification.push_sent.is_(False),
        )
    )
    return result.rowcount
