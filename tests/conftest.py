"""Shared test fixtures.

Database tests run against a throwaway SQLite file built from the ORM
metadata; the payment provider and Redis are replaced with in-test fakes.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from meza.auth.jwt import create_access_token
from meza.challenges.lifecycle import ChallengeLifecycle
from meza.database import get_session
from meza.db.base import Base
from meza.db.models import Challenge, Profile, PushSubscription
from meza.dependencies import get_lifecycle
from meza.main import create_app
from meza.notifications.dispatcher import NotificationDispatcher
from meza.payments.provider import BasePaymentProvider, ChargeReference

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "22222222-2222-4222-8222-222222222222"

# 06:00 UTC on a fixed day; scenarios run relative to this.
SIX_AM = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
SEVEN_AM = SIX_AM + timedelta(hours=1)

HOME = (35.68, 139.76)
TARGET = (35.65, 139.70)


def challenge_input(**overrides: object) -> dict[str, object]:
    """Valid create payload: home (35.68, 139.76), target (35.65, 139.70), 07:00, 500."""
    data: dict[str, object] = {
        "target_time": "07:00",
        "penalty_amount": 500,
        "home_latitude": HOME[0],
        "home_longitude": HOME[1],
        "home_address": "Chiyoda, Tokyo",
        "target_latitude": TARGET[0],
        "target_longitude": TARGET[1],
        "target_address": "Shibuya Station",
    }
    data.update(overrides)
    return data


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakePaymentProvider(BasePaymentProvider):
    """Records charge calls; succeeds unless told otherwise."""

    def __init__(self, status: str = "succeeded", error: Exception | None = None, delay: float = 0.0) -> None:
        self.status = status
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, object]] = []

    async def charge_penalty(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> ChargeReference:
        self.calls.append({
            "customer_id": customer_id,
            "payment_method_id": payment_method_id,
            "amount": amount,
            "currency": currency,
            "idempotency_key": idempotency_key,
            "metadata": metadata,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ChargeReference(id=f"pi_test_{len(self.calls)}", status=self.status)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meza.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


async def make_profile(
    db: AsyncSession,
    user_id: str = USER_ID,
    with_card: bool = True,
) -> Profile:
    profile = Profile(
        id=user_id,
        email=f"{user_id[:8]}@example.com",
        stripe_customer_id="cus_test" if with_card else None,
        default_payment_method="pm_test" if with_card else None,
        created_at=SIX_AM - timedelta(days=30),
        updated_at=SIX_AM - timedelta(days=30),
    )
    db.add(profile)
    await db.commit()
    return profile


async def make_subscription(db: AsyncSession, user_id: str = USER_ID) -> PushSubscription:
    subscription = PushSubscription(
        user_id=user_id,
        endpoint=f"https://push.example.com/{uuid.uuid4()}",
        p256dh_key="p256dh",
        auth_key="auth",
        is_active=True,
    )
    db.add(subscription)
    await db.commit()
    return subscription


async def make_active_challenge(
    db: AsyncSession,
    user_id: str = USER_ID,
    ends_at: datetime = SEVEN_AM,
    started_at: datetime = SIX_AM,
    penalty_amount: int = 500,
) -> Challenge:
    """Insert an already-active challenge, bypassing the engine."""
    challenge = Challenge(
        user_id=user_id,
        status="active",
        target_time=ends_at.strftime("%H:%M"),
        penalty_amount=penalty_amount,
        home_latitude=HOME[0],
        home_longitude=HOME[1],
        target_latitude=TARGET[0],
        target_longitude=TARGET[1],
        started_at=started_at,
        ends_at=ends_at,
        created_at=started_at,
        updated_at=started_at,
    )
    db.add(challenge)
    await db.commit()
    return challenge


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> Profile:
    """Profile with a saved card."""
    return await make_profile(db_session)


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> Profile:
    return await make_profile(db_session, OTHER_USER_ID)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(SIX_AM)


@pytest.fixture
def payment_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stands in for redis.asyncio.Redis; only ``publish`` is used."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def dispatcher(session_factory, redis_mock, clock) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, redis=redis_mock, clock=clock)


@pytest.fixture
def lifecycle(payment_provider, dispatcher, clock) -> ChallengeLifecycle:
    return ChallengeLifecycle(payment_provider, dispatcher, clock=clock)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def auth_headers(user_id: str = USER_ID, email: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


@pytest_asyncio.fixture
async def client(session_factory, payment_provider, redis_mock) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client against the app wired to the test database.

    The lifecycle engine here runs on the real clock.
    """
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    real_time_lifecycle = ChallengeLifecycle(
        payment_provider,
        NotificationDispatcher(session_factory, redis=redis_mock),
    )
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_lifecycle] = lambda: real_time_lifecycle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, user: Profile) -> AsyncClient:
    """Client authenticated as USER_ID (profile with a saved card)."""
    client.headers.update(auth_headers(user.id, user.email))
    return client
