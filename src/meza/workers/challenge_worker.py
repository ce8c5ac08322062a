"""Challenge arq worker: expiry sweep, scheduled push dispatch, payment retries."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from meza.challenges.lifecycle import ChallengeLifecycle
from meza.config import get_settings
from meza.database import close_db, get_session_factory, init_db
from meza.notifications.dispatcher import NotificationDispatcher
from meza.payments import service as payment_service
from meza.payments.provider import get_payment_provider

logger = logging.getLogger(__name__)


def _dispatcher(ctx: dict) -> NotificationDispatcher:
    return NotificationDispatcher(ctx["session_factory"], redis=ctx.get("redis"))


async def sweep_expired_challenges(ctx: dict) -> int:
    """Fail active challenges past their deadline and charge penalties. Runs every minute."""
    settings = get_settings()
    lifecycle = ChallengeLifecycle.from_settings(settings, ctx["payment_provider"], _dispatcher(ctx))
    async with ctx["session_factory"]() as db:
        result = await lifecycle.sweep_expired(db)

    if result.expired:
        logger.info(
            "Expired %d challenges (%d charge failures, %d skipped)",
            result.expired,
            result.charge_failures,
            result.skipped,
        )
    return result.expired


async def dispatch_scheduled_notifications(ctx: dict) -> int:
    """Publish reminders whose scheduled time has arrived. Runs every minute."""
    published = await _dispatcher(ctx).dispatch_due(limit=get_settings().notification_dispatch_batch_size)
    if published:
        logger.info("Published %d scheduled notifications", published)
    return published


async def retry_failed_payments(ctx: dict) -> int:
    """Retry recent failed penalty charges. Runs every 15 minutes."""
    settings = get_settings()
    async with ctx["session_factory"]() as db:
        succeeded, failed = await payment_service.retry_failed_payments(
            db,
            ctx["payment_provider"],
            max_retries=settings.payment_max_retries,
            window_hours=settings.payment_retry_window_hours,
            timeout=settings.payment_timeout_seconds,
        )

    if succeeded or failed:
        logger.info("Payment retries: %d succeeded, %d failed", succeeded, failed)
    return succeeded


async def challenge_worker_startup(ctx: dict) -> None:
    """Initialize connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url, settings)
    ctx["session_factory"] = get_session_factory()
    ctx["payment_provider"] = get_payment_provider()
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Challenge worker started")


async def challenge_worker_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    redis_client = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Challenge worker shut down")


class ChallengeWorkerSettings:
    """arq worker settings for challenge background jobs."""

    functions = [sweep_expired_challenges, dispatch_scheduled_notifications, retry_failed_payments]
    cron_jobs = [
        cron(sweep_expired_challenges, second=0, unique=True),
        cron(dispatch_scheduled_notifications, second=30, unique=True),
        cron(retry_failed_payments, minute={0, 15, 30, 45}, second=10, unique=True),
    ]
    on_startup = challenge_worker_startup
    on_shutdown = challenge_worker_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 120
