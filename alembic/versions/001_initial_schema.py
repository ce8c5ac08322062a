"""Initial schema: profiles, challenges, payments, notifications, settings.

Creates every table the API uses, including the partial unique index that
allows at most one active challenge per user.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id VARCHAR(36) PRIMARY KEY,
            email VARCHAR(320),
            stripe_customer_id VARCHAR(64),
            default_payment_method VARCHAR(64),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'active', 'completed', 'failed')),
            target_time VARCHAR(5) NOT NULL,
            penalty_amount INTEGER NOT NULL CHECK (penalty_amount > 0),
            home_latitude DOUBLE PRECISION NOT NULL,
            home_longitude DOUBLE PRECISION NOT NULL,
            home_address TEXT NOT NULL DEFAULT '',
            target_latitude DOUBLE PRECISION NOT NULL,
            target_longitude DOUBLE PRECISION NOT NULL,
            target_address TEXT NOT NULL DEFAULT '',
            wake_up_location_lat DOUBLE PRECISION,
            wake_up_location_lng DOUBLE PRECISION,
            wake_up_location_address TEXT,
            started_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            completion_lat DOUBLE PRECISION,
            completion_lng DOUBLE PRECISION,
            completion_address TEXT,
            distance_to_target DOUBLE PRECISION,
            payment_intent_id VARCHAR(64),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_challenges_one_active_per_user
        ON challenges(user_id) WHERE status = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_challenges_status_ends_at
        ON challenges(status, ends_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_challenges_user_created
        ON challenges(user_id, created_at DESC)
    """)

    # --- Payments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS payments (
            id VARCHAR(36) PRIMARY KEY,
            challenge_id VARCHAR(36) NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            currency VARCHAR(8) NOT NULL,
            status VARCHAR(24) NOT NULL DEFAULT 'pending',
            provider_reference VARCHAR(64),
            idempotency_key VARCHAR(64) NOT NULL UNIQUE,
            error_code VARCHAR(64),
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_payments_status_created
        ON payments(status, created_at)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            title VARCHAR(256) NOT NULL,
            body TEXT NOT NULL,
            type VARCHAR(32) NOT NULL DEFAULT 'general',
            is_read BOOLEAN NOT NULL DEFAULT false,
            push_sent BOOLEAN NOT NULL DEFAULT false,
            scheduled_for TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_user_created
        ON notifications(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_push_pending
        ON notifications(push_sent, scheduled_for)
    """)

    # --- Push Subscriptions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS push_subscriptions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            endpoint TEXT NOT NULL,
            p256dh_key VARCHAR(256) NOT NULL,
            auth_key VARCHAR(128) NOT NULL,
            user_agent VARCHAR(512),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT push_subscriptions_user_endpoint_key UNIQUE (user_id, endpoint)
        )
    """)

    # --- User Settings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_settings (
            user_id VARCHAR(36) PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
            push_notifications_enabled BOOLEAN NOT NULL DEFAULT true,
            reminder_enabled BOOLEAN NOT NULL DEFAULT true,
            reminder_minutes_before INTEGER NOT NULL DEFAULT 30,
            theme VARCHAR(8) NOT NULL DEFAULT 'auto' CHECK (theme IN ('light', 'dark', 'auto')),
            timezone VARCHAR(64) NOT NULL DEFAULT 'Asia/Tokyo',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_settings")
    op.execute("DROP TABLE IF EXISTS push_subscriptions")
    op.execute("DROP TABLE IF EXISTS notifications")
    op.execute("DROP TABLE IF EXISTS payments")
    op.execute("DROP TABLE IF EXISTS challenges")
    op.execute("DROP TABLE IF EXISTS profiles")
