"""User endpoints: own profile, payment method, settings and data export."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from meza.auth.dependencies import get_current_user
from meza.challenges.service import list_challenges
from meza.database import get_session
from meza.db.models import Profile
from meza.errors import ValidationError
from meza.users.export import EXPORT_FORMATS, build_export, challenges_csv
from meza.users.schemas import (
    PaymentMethodUpdateRequest,
    ProfileResponse,
    SettingsResponse,
    SettingsUpdateRequest,
)
from meza.users.service import get_user_settings, update_payment_method, update_user_settings

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=ProfileResponse)
async def get_me(
    user: Profile = Depends(get_current_user),
) -> ProfileResponse:
    """Get own profile."""
    return ProfileResponse.from_profile(user)


@router.put("/me/payment-method", response_model=ProfileResponse)
async def put_payment_method(
    body: PaymentMethodUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    """Save the card used for penalty charges."""
    profile = await update_payment_method(db, user, body.stripe_customer_id, body.payment_method_id)
    await db.commit()
    return ProfileResponse.from_profile(profile)


@router.get("/me/settings", response_model=SettingsResponse)
async def get_settings_endpoint(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SettingsResponse:
    """Get own settings (defaults are created on first read)."""
    settings = await get_user_settings(db, user.id)
    await db.commit()
    return SettingsResponse.model_validate(settings)


@router.put("/me/settings", response_model=SettingsResponse)
async def put_settings(
    body: SettingsUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SettingsResponse:
    """Partially update own settings."""
    settings = await update_user_settings(
        db,
        user.id,
        push_notifications_enabled=body.push_notifications_enabled,
        reminder_enabled=body.reminder_enabled,
        reminder_minutes_before=body.reminder_minutes_before,
        theme=body.theme,
        timezone_name=body.timezone,
    )
    await db.commit()
    logger.info("settings_updated", user_id=user.id)
    return SettingsResponse.model_validate(settings)


@router.get("/me/export")
async def export_my_data(
    format: str = Query("json"),  # noqa: A002
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Response:
    """Download everything stored for the caller, or just the challenge history as CSV."""
    if format not in EXPORT_FORMATS:
        raise ValidationError("format", f"must be one of {', '.join(EXPORT_FORMATS)}")

    logger.info("data_exported", user_id=user.id, format=format)
    if format == "csv":
        return Response(
            content=challenges_csv(await list_challenges(db, user.id)),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="meza-challenges-{user.id}.csv"'},
        )
    export = await build_export(db, user)
    return Response(
        content=export.model_dump_json(indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="meza-data-{user.id}.json"'},
    )
