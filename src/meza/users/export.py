"""Personal data export: everything stored for a user, as JSON or a challenges CSV."""

from __future__ import annotations

import csv
import io
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meza.challenges.schemas import ChallengeResponse
from meza.challenges.service import list_challenges
from meza.challenges.time_utils import now_utc
from meza.db.models import Challenge, Notification, Payment, Profile
from meza.notifications.schemas import NotificationResponse
from meza.payments.schemas import PaymentResponse
from meza.users.schemas import ProfileResponse, SettingsResponse
from meza.users.service import find_user_settings

EXPORT_FORMATS = ("json", "csv")

CSV_COLUMNS = (
    "created_at",
    "status",
    "target_time",
    "penalty_amount",
    "home_address",
    "target_address",
    "started_at",
    "ends_at",
    "completed_at",
    "distance_to_target",
)


class ExportInfo(BaseModel):
    user_id: str
    exported_at: datetime
    format: str


class UserDataExport(BaseModel):
    export_info: ExportInfo
    profile: ProfileResponse
    challenges: list[ChallengeResponse]
    payments: list[PaymentResponse]
    settings: SettingsResponse | None = None
    notifications: list[NotificationResponse]


async def build_export(db: AsyncSession, profile: Profile, now: datetime | None = None) -> UserDataExport:
    """Collect the user's rows, newest first."""
    payments = await db.execute(
        select(Payment).where(Payment.user_id == profile.id).order_by(Payment.created_at.desc())
    )
    notifications = await db.execute(
        select(Notification).where(Notification.user_id == profile.id).order_by(Notification.created_at.desc())
    )
    settings = await find_user_settings(db, profile.id)

    return UserDataExport(
        export_info=ExportInfo(user_id=profile.id, exported_at=now or now_utc(), format="json"),
        profile=ProfileResponse.from_profile(profile),
        challenges=[ChallengeResponse.model_validate(c) for c in await list_challenges(db, profile.id)],
        payments=[PaymentResponse.model_validate(p) for p in payments.scalars().all()],
        settings=SettingsResponse.model_validate(settings) if settings is not None else None,
        notifications=[NotificationResponse.model_validate(n) for n in notifications.scalars().all()],
    )


def _csv_value(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def challenges_csv(challenges: list[Challenge]) -> str:
    """One row per challenge with a header line."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for challenge in challenges:
        writer.writerow([_csv_value(getattr(challenge, column)) for column in CSV_COLUMNS])
    return buffer.getvalue()
