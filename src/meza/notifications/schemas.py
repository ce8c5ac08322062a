"""Pydantic schemas for notification endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    challenge_id: str | None = None
    title: str
    body: str
    type: str
    is_read: bool
    push_sent: bool
    scheduled_for: datetime | None = None
    created_at: datetime | None = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class NotificationCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    body: str = Field(..., min_length=1, max_length=2000)
    type: str = "general"
    scheduled_for: datetime | None = None


class NotificationUpdateRequest(BaseModel):
    is_read: bool


class UnreadCountResponse(BaseModel):
    unread_count: int


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1, max_length=256)
    auth: str = Field(..., min_length=1, max_length=128)


class SubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)
    keys: PushKeys
    user_agent: str | None = Field(None, max_length=512)


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    endpoint: str
    is_active: bool
    created_at: datetime | None = None
