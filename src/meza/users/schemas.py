"""Request/response schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from meza.db.models import Profile


class ProfileResponse(BaseModel):
    id: str
    email: str | None = None
    has_payment_method: bool
    created_at: datetime | None = None

    @classmethod
    def from_profile(cls, profile: Profile) -> ProfileResponse:
        return cls(
            id=profile.id,
            email=profile.email,
            has_payment_method=bool(profile.stripe_customer_id and profile.default_payment_method),
            created_at=profile.created_at,
        )


class PaymentMethodUpdateRequest(BaseModel):
    stripe_customer_id: str = Field(..., min_length=1, max_length=64)
    payment_method_id: str = Field(..., min_length=1, max_length=64)


class SettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    push_notifications_enabled: bool
    reminder_enabled: bool
    reminder_minutes_before: int
    theme: str
    timezone: str
    updated_at: datetime | None = None


class SettingsUpdateRequest(BaseModel):
    push_notifications_enabled: bool | None = None
    reminder_enabled: bool | None = None
    reminder_minutes_before: int | None = Field(None, ge=0, le=720)
    theme: str | None = None
    timezone: str | None = Field(None, max_length=64)
