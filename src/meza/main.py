"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from meza.challenges.router import router as challenges_router
from meza.config import get_settings
from meza.database import close_db, init_db
from meza.health.router import router as health_router
from meza.middleware import setup_middleware
from meza.notifications.router import router as notifications_router
from meza.payments.provider import reset_payment_provider
from meza.payments.router import router as payments_router
from meza.redis_client import close_redis, init_redis
from meza.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url, settings)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    logger.info("api_started", environment=settings.environment, payment_provider=settings.payment_provider)

    yield

    await close_db()
    await close_redis()
    reset_payment_provider()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meza API",
        description="Wake-up challenge service: reach your target by the deadline or pay the penalty",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(challenges_router)
    app.include_router(notifications_router)
    app.include_router(payments_router)

    return app


app = create_app()
