"""Challenge evidence and challenge-linked notifications.

Adds ``challenges.evidence`` for proof-of-arrival submissions and
``notifications.challenge_id`` so unsent reminders can be dropped once their
challenge finishes.

Revision ID: 002_evidence_and_reminder_links
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_evidence_and_reminder_links"
down_revision: str | None = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("ALTER TABLE challenges ADD COLUMN IF NOT EXISTS evidence JSONB")

    op.execute("""
        ALTER TABLE notifications
        ADD COLUMN IF NOT EXISTS challenge_id VARCHAR(36) REFERENCES challenges(id) ON DELETE CASCADE
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_challenge_pending
        ON notifications (challenge_id)
        WHERE push_sent = FALSE
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_notifications_challenge_pending")
    op.execute("ALTER TABLE notifications DROP COLUMN IF EXISTS challenge_id")
    op.execute("ALTER TABLE challenges DROP COLUMN IF EXISTS evidence")
