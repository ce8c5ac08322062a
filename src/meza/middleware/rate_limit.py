"""Redis-backed fixed window rate limiting middleware."""

import time
from typing import Any

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from meza.redis_client import get_redis

logger = structlog.get_logger()

# Probes and the clock endpoint are polled by clients and orchestrators.
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version", "/api/v1/time"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Limit requests per client IP per window using Redis counters."""

    def __init__(self, app: Any, requests_per_window: int = 100, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds

    async def _hit(self, key: str) -> int | None:
        """Increment the window counter. None when Redis is unavailable."""
        try:
            redis = get_redis()
        except RuntimeError:
            return None
        try:
            pipe = redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds + 1)
            results: list[Any] = await pipe.execute()
        except RedisError as e:
            logger.warning("rate_limit_unavailable", error=str(e))
            return None
        return int(results[0])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Return 429 once the client exceeds its window budget."""
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time()) // self.window_seconds
        current_count = await self._hit(f"meza:ratelimit:{client_ip}:{window}")
        if current_count is None:
            return await call_next(request)

        if current_count > self.requests_per_window:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(self.requests_per_window),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_window - current_count))
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
        return response
