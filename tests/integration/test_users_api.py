"""Integration: profile and settings endpoints."""

from __future__ import annotations

import csv
import io
from datetime import timedelta

import pytest

from meza.db.models import Payment
from meza.users.export import CSV_COLUMNS
from tests.conftest import SIX_AM, USER_ID, auth_headers, challenge_input, make_active_challenge


class TestProfile:
    @pytest.mark.asyncio
    async def test_me(self, authed_client, user):
        response = await authed_client.get("/api/v1/users/me")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == user.id
        assert data["has_payment_method"] is True

    @pytest.mark.asyncio
    async def test_first_request_creates_profile(self, client):
        user_id = "33333333-3333-4333-8333-333333333333"

        response = await client.get("/api/v1/users/me", headers=auth_headers(user_id, "new@example.com"))

        assert response.status_code == 200
        assert response.json()["email"] == "new@example.com"
        assert response.json()["has_payment_method"] is False

    @pytest.mark.asyncio
    async def test_save_payment_method(self, client):
        headers = auth_headers("44444444-4444-4444-8444-444444444444")

        response = await client.put(
            "/api/v1/users/me/payment-method",
            json={"stripe_customer_id": "cus_new", "payment_method_id": "pm_new"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["has_payment_method"] is True


class TestSettings:
    @pytest.mark.asyncio
    async def test_defaults(self, authed_client):
        response = await authed_client.get("/api/v1/users/me/settings")

        assert response.status_code == 200
        data = response.json()
        assert data["push_notifications_enabled"] is True
        assert data["reminder_enabled"] is True
        assert data["reminder_minutes_before"] == 30
        assert data["theme"] == "auto"

    @pytest.mark.asyncio
    async def test_partial_update(self, authed_client):
        response = await authed_client.put(
            "/api/v1/users/me/settings", json={"theme": "dark", "reminder_minutes_before": 15},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["theme"] == "dark"
        assert data["reminder_minutes_before"] == 15
        assert data["push_notifications_enabled"] is True

    @pytest.mark.asyncio
    async def test_invalid_theme(self, authed_client):
        response = await authed_client.put("/api/v1/users/me/settings", json={"theme": "neon"})
        assert response.status_code == 400
        assert response.json()["field"] == "theme"

    @pytest.mark.asyncio
    async def test_invalid_timezone(self, authed_client):
        response = await authed_client.put("/api/v1/users/me/settings", json={"timezone": "Mars/Olympus"})
        assert response.status_code == 400
        assert response.json()["field"] == "timezone"


class TestExport:
    async def _history(self, client, db) -> None:
        response = await client.post("/api/v1/challenges", json=challenge_input())
        assert response.status_code == 201
        yesterday = SIX_AM - timedelta(days=1)
        failed = await make_active_challenge(db, ends_at=yesterday, started_at=yesterday - timedelta(hours=1))
        failed.status = "failed"
        db.add(Payment(
            challenge_id=failed.id, user_id=USER_ID, amount=500, currency="jpy", status="succeeded",
            idempotency_key=failed.id, provider_reference="pi_export", created_at=SIX_AM,
        ))
        await db.commit()

    @pytest.mark.asyncio
    async def test_json_bundle(self, authed_client, db_session):
        await self._history(authed_client, db_session)

        response = await authed_client.get("/api/v1/users/me/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert f"meza-data-{USER_ID}.json" in response.headers["content-disposition"]
        data = response.json()
        assert data["export_info"]["user_id"] == USER_ID
        assert data["profile"]["id"] == USER_ID
        assert sorted(c["status"] for c in data["challenges"]) == ["failed", "pending"]
        assert [p["provider_reference"] for p in data["payments"]] == ["pi_export"]

    @pytest.mark.asyncio
    async def test_challenges_csv(self, authed_client, db_session):
        await self._history(authed_client, db_session)

        response = await authed_client.get("/api/v1/users/me/export", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"meza-challenges-{USER_ID}.csv" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == list(CSV_COLUMNS)
        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_only_own_data(self, client, authed_client, db_session):
        await self._history(authed_client, db_session)

        response = await client.get(
            "/api/v1/users/me/export", headers=auth_headers("55555555-5555-4555-8555-555555555555"),
        )

        data = response.json()
        assert data["challenges"] == []
        assert data["payments"] == []

    @pytest.mark.asyncio
    async def test_unknown_format(self, authed_client):
        response = await authed_client.get("/api/v1/users/me/export", params={"format": "xml"})

        assert response.status_code == 400
        assert response.json()["field"] == "format"
