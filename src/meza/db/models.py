"""ORM models for the Meza schema.

Tables are created by the Alembic baseline migration. Identifiers are string
UUIDs so that ``profiles.id`` can equal the auth provider's subject claim.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from meza.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """One row per authenticated user; id is the token subject."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    default_payment_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    settings: Mapped[UserSettings | None] = relationship("UserSettings", back_populates="profile", uselist=False)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """A wake-up challenge: reach the target by the deadline or pay the penalty."""

    __tablename__ = "challenges"
    __table_args__ = (
        # At most one active challenge per user.
        Index(
            "uq_challenges_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_challenges_status_ends_at", "status", "ends_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")

    target_time: Mapped[str] = mapped_column(String(5), nullable=False)
    penalty_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    home_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    home_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    home_address: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    target_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    target_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    target_address: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    wake_up_location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    wake_up_location_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    wake_up_location_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    completion_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    completion_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    completion_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_to_target: Mapped[float | None] = mapped_column(Float, nullable=True)

    payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Latest proof of arrival submitted while active: {type, data, metadata, submitted_at, ...}
    evidence: Mapped[dict[str, Any] | None] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class Payment(Base):
    """Penalty charge ledger. One row per challenge, keyed by idempotency key."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    challenge_id: Mapped[str] = mapped_column(String(36), ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="pending", server_default="pending")
    provider_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_push_pending", "push_sent", "scheduled_for"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("challenges.id", ondelete="CASCADE"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="general", server_default="general")
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    push_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PushSubscription(Base):
    """Browser push endpoint registered by a user."""

    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="push_subscriptions_user_endpoint_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh_key: Mapped[str] = mapped_column(String(256), nullable=False)
    auth_key: Mapped[str] = mapped_column(String(128), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# User Settings
# ---------------------------------------------------------------------------


class UserSettings(Base):
    """Per-user notification and display preferences."""

    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    push_notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    reminder_minutes_before: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default="30")
    theme: Mapped[str] = mapped_column(String(8), nullable=False, default="auto", server_default="auto")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Asia/Tokyo", server_default="Asia/Tokyo")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    profile: Mapped[Profile] = relationship("Profile", back_populates="settings")
