"""Fire-and-forget notification side channel used by the challenge lifecycle.

The dispatcher works in its own session so that a failure here can never roll
back the transition that triggered it.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meza.challenges.time_utils import Clock, ensure_utc, now_utc
from meza.db.models import Challenge, Notification
from meza.errors import DispatchError
from meza.notifications.push import push_notification_to_user
from meza.notifications.service import create_notification, get_due_unsent
from meza.notifications.subscriptions import get_active_subscriptions
from meza.users.service import find_user_settings

logger = structlog.get_logger()


async def _is_stale_reminder(db: AsyncSession, notification: Notification) -> bool:
    """A reminder whose challenge already finished (or is gone)."""
    if notification.type != "reminder" or notification.challenge_id is None:
        return False
    challenge = await db.get(Challenge, notification.challenge_id)
    return challenge is None or challenge.status != "active"


async def _push_allowed(db: AsyncSession, user_id: str) -> bool:
    """Push is on in the user's settings and at least one endpoint is registered."""
    settings = await find_user_settings(db, user_id)
    if settings is not None and not settings.push_notifications_enabled:
        return False
    return bool(await get_active_subscriptions(db, user_id))


class NotificationDispatcher:
    """Persist a notification and, when it is due, publish it for push delivery."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: object | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._clock = clock

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        type_: str = "general",
        scheduled_for: datetime | None = None,
        challenge_id: str | None = None,
    ) -> Notification:
        """Record a notification for ``user_id``.

        Raises:
            DispatchError: If the notification could not be stored.
        """
        now = self._clock()
        try:
            async with self._session_factory() as db:
                notification = await create_notification(
                    db, user_id, title, body, type_, scheduled_for=scheduled_for, now=now, challenge_id=challenge_id,
                )
                await db.commit()

                due = scheduled_for is None or ensure_utc(scheduled_for) <= now
                if due and await _push_allowed(db, user_id):
                    if await push_notification_to_user(self._redis, notification):
                        notification.push_sent = True
                        await db.commit()
                return notification
        except (SQLAlchemyError, ValueError) as e:
            raise DispatchError(f"Could not record notification for user {user_id}: {e}") from e

    async def dispatch_due(self, limit: int = 50) -> int:
        """Publish stored notifications whose scheduled time has arrived.

        Notifications that cannot be pushed (push disabled or no endpoint), or that
        were published successfully, are marked ``push_sent`` so they are not picked up again.
        Reminders for challenges that are no longer active are deleted unsent.
        Returns the number published.
        """
        now = self._clock()
        published = 0
        async with self._session_factory() as db:
            for notification in await get_due_unsent(db, now, limit):
                if await _is_stale_reminder(db, notification):
                    await db.delete(notification)
                    continue
                if not await _push_allowed(db, notification.user_id):
                    notification.push_sent = True
                    continue
                if await push_notification_to_user(self._redis, notification):
                    notification.push_sent = True
                    published += 1
            await db.commit()
        if published:
            logger.info("notifications_dispatched", count=published)
        return published
