"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends

from meza.challenges.lifecycle import ChallengeLifecycle
from meza.config import get_settings
from meza.database import get_session as _get_session
from meza.database import get_session_factory
from meza.notifications.dispatcher import NotificationDispatcher
from meza.payments.provider import get_payment_provider
from meza.redis_client import get_redis as _get_redis
from meza.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client as a FastAPI dependency."""
    yield _get_redis()


def get_dispatcher() -> NotificationDispatcher:
    """Notification dispatcher bound to the app's session factory and Redis."""
    return NotificationDispatcher(get_session_factory(), redis=get_redis_or_none())


def get_lifecycle(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),  # noqa: B008
) -> ChallengeLifecycle:
    """Challenge lifecycle engine wired to the configured collaborators."""
    return ChallengeLifecycle.from_settings(get_settings(), get_payment_provider(), dispatcher)
