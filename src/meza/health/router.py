"""Liveness, readiness and version probes."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meza.config import get_settings
from meza.database import get_session
from meza.payments.provider import configuration_problem
from meza.redis_client import ping_redis

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return f"error: {exc}"
    return "ok"


async def _check_redis() -> str:
    problem = await ping_redis()
    return "ok" if problem is None else f"error: {problem}"


def _check_payments() -> str:
    """Penalties cannot be charged or reconciled without a configured provider."""
    problem = configuration_problem()
    return "ok" if problem is None else f"error: {problem}"


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: database, Redis and the payment provider configuration."""
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "payments": _check_payments(),
    }
    ready = all(result == "ok" for result in checks.values())
    return {
        "status": "ready" if ready else "degraded",
        "payment_provider": get_settings().payment_provider,
        "checks": checks,
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "meza-api",
        "version": settings.app_version,
        "environment": settings.environment,
    }
