"""Redis pool shared by rate limiting and push fan-out (``push:user:{id}`` channels)."""

import redis.asyncio as redis
from redis.exceptions import RedisError

from meza.config import get_settings

_pool: redis.Redis | None = None


async def init_redis(url: str, max_connections: int | None = None) -> None:
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections or get_settings().redis_max_connections,
        socket_timeout=5,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_redis_or_none() -> redis.Redis | None:
    """The client, or None when Redis was never initialized (rate limiting is then skipped)."""
    return _pool


async def ping_redis() -> str | None:
    """None when Redis answers, otherwise a short reason for the readiness probe."""
    if _pool is None:
        return "not initialized"
    try:
        await _pool.ping()
    except RedisError as exc:
        return str(exc) or exc.__class__.__name__
    return None
