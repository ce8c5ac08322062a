"""Proof-of-arrival evidence attached to an active challenge."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.service import get_challenge
from meza.challenges.time_utils import ensure_utc, now_utc
from meza.db.models import Challenge
from meza.errors import InvalidTransition, ValidationError

logger = structlog.get_logger()

EVIDENCE_TYPES = ("photo", "gps", "qr_code", "manual", "combined")


async def get_evidence(db: AsyncSession, user_id: str, challenge_id: str) -> Challenge:
    """Owner-scoped read of a challenge and its evidence."""
    return await get_challenge(db, user_id, challenge_id)


async def submit_evidence(
    db: AsyncSession,
    user_id: str,
    challenge_id: str,
    evidence_type: str | None,
    evidence_data: Any,  # noqa: ANN401
    metadata: dict[str, Any] | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> Challenge:
    """Record evidence on an active challenge, replacing any earlier submission.

    Raises:
        ValidationError: Unknown ``evidence_type`` or empty ``evidence_data``.
        NotFound: Unknown challenge or owned by someone else.
        InvalidTransition: The challenge is not active.
    """
    if not evidence_type:
        raise ValidationError("evidence_type", "is required")
    if evidence_type not in EVIDENCE_TYPES:
        raise ValidationError("evidence_type", f"must be one of {', '.join(EVIDENCE_TYPES)}")
    if evidence_data is None or evidence_data == "" or evidence_data == {}:
        raise ValidationError("evidence_data", "is required")

    now = ensure_utc(now) if now is not None else now_utc()
    challenge = await get_challenge(db, user_id, challenge_id)
    if challenge.status != "active":
        raise InvalidTransition("Evidence can only be added to an active challenge", challenge.status)

    evidence = {
        "type": evidence_type,
        "data": evidence_data,
        "metadata": metadata or {},
        "submitted_at": now.isoformat(),
        "user_agent": user_agent,
        "ip_address": ip_address or "unknown",
    }
    result = await db.execute(
        update(Challenge)
        .execution_options(synchronize_session=False)
        .where(Challenge.id == challenge.id, Challenge.status == "active")
        .values(evidence=evidence, updated_at=now)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise InvalidTransition("Challenge is no longer active")
    await db.commit()
    await db.refresh(challenge)
    logger.info("evidence_submitted", challenge_id=challenge.id, evidence_type=evidence_type)
    return challenge
