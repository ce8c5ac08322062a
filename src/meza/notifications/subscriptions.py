"""Browser push subscription registry."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.time_utils import now_utc
from meza.db.models import PushSubscription

logger = structlog.get_logger()


async def subscribe(
    db: AsyncSession,
    user_id: str,
    endpoint: str,
    p256dh_key: str,
    auth_key: str,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> PushSubscription:
    """Register an endpoint, or refresh and reactivate it if already known."""
    now = now or now_utc()
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    subscription = result.scalar_one_or_none()

    if subscription is None:
        subscription = PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key=p256dh_key,
            auth_key=auth_key,
            user_agent=user_agent,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(subscription)
    else:
        subscription.p256dh_key = p256dh_key
        subscription.auth_key = auth_key
        subscription.user_agent = user_agent
        subscription.is_active = True
        subscription.updated_at = now

    await db.flush()
    logger.info("push_subscribed", user_id=user_id)
    return subscription


async def unsubscribe(db: AsyncSession, user_id: str, endpoint: str) -> bool:
    """Deactivate an endpoint. Returns False if it was not registered."""
    result = await db.execute(
        update(PushSubscription)
        .where(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
        .values(is_active=False, updated_at=now_utc())
    )
    await db.flush()
    return result.rowcount > 0


async def get_active_subscriptions(db: AsyncSession, user_id: str) -> list[PushSubscription]:
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.is_active.is_(True),
        )
    )
    return list(result.scalars().all())
