"""Profile and user settings business logic."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import select

from meza.config import get_settings
from meza.db.models import Profile, UserSettings
from meza.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

VALID_THEMES = {"light", "dark", "auto"}


async def get_or_create_profile(
    db: AsyncSession,
    user_id: str,
    email: str | None = None,
) -> Profile:
    """Return the profile for an auth subject, creating it on first sight."""
    profile = await db.get(Profile, user_id)
    if profile is not None:
        if email and profile.email != email:
            profile.email = email
            await db.flush()
        return profile

    now = datetime.now(timezone.utc)
    profile = Profile(id=user_id, email=email, created_at=now, updated_at=now)
    db.add(profile)
    await db.flush()
    logger.info("profile_created", user_id=user_id)
    return profile


async def update_payment_method(
    db: AsyncSession,
    profile: Profile,
    customer_id: str,
    payment_method_id: str,
) -> Profile:
    """Store the saved card used for off-session penalty charges."""
    profile.stripe_customer_id = customer_id
    profile.default_payment_method = payment_method_id
    profile.updated_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("payment_method_updated", user_id=profile.id)
    return profile


async def find_user_settings(db: AsyncSession, user_id: str) -> UserSettings | None:
    """Get user settings without creating them."""
    result = await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
    return result.scalar_one_or_none()


async def get_user_settings(db: AsyncSession, user_id: str) -> UserSettings:
    """Get user settings, creating defaults if they don't exist."""
    settings = await find_user_settings(db, user_id)

    if settings is None:
        now = datetime.now(timezone.utc)
        settings = UserSettings(
            user_id=user_id,
            push_notifications_enabled=True,
            reminder_enabled=True,
            reminder_minutes_before=30,
            theme="auto",
            timezone=get_settings().default_timezone,
            created_at=now,
            updated_at=now,
        )
        db.add(settings)
        await db.flush()

    return settings


async def update_user_settings(
    db: AsyncSession,
    user_id: str,
    push_notifications_enabled: bool | None = None,
    reminder_enabled: bool | None = None,
    reminder_minutes_before: int | None = None,
    theme: str | None = None,
    timezone_name: str | None = None,
) -> UserSettings:
    """
    Partially update user settings.

    Only the provided fields are updated; others remain unchanged.

    Raises:
        ValidationError: If the theme or timezone is not recognised.
    """
    if theme is not None and theme not in VALID_THEMES:
        raise ValidationError("theme", f"must be one of {sorted(VALID_THEMES)}")
    if timezone_name is not None:
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError("timezone", "unknown timezone") from None

    settings = await get_user_settings(db, user_id)

    if push_notifications_enabled is not None:
        settings.push_notifications_enabled = push_notifications_enabled
    if reminder_enabled is not None:
        settings.reminder_enabled = reminder_enabled
    if reminder_minutes_before is not None:
        settings.reminder_minutes_before = reminder_minutes_before
    if theme is not None:
        settings.theme = theme
    if timezone_name is not None:
        settings.timezone = timezone_name

    settings.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return settings
