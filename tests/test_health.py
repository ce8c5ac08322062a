"""Health, readiness and version endpoint tests."""

import pytest
from httpx import AsyncClient

from meza.config import get_settings


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_ready_reports_each_dependency(client: AsyncClient) -> None:
    """Redis is not initialized in tests, so readiness is degraded."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "error: not initialized"
    assert data["checks"]["payments"] == "ok"
    assert data["payment_provider"] == "log"
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_ready_flags_unconfigured_stripe(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setenv("MEZA_PAYMENT_PROVIDER", "stripe")
    monkeypatch.setenv("MEZA_STRIPE_SECRET_KEY", "sk_test")
    monkeypatch.setenv("MEZA_STRIPE_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    try:
        response = await client.get("/ready")
    finally:
        get_settings.cache_clear()
    data = response.json()
    assert data["payment_provider"] == "stripe"
    assert data["checks"]["payments"] == "error: stripe webhook secret is not set"


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "meza-api"
    assert "version" in data
    assert "environment" in data
