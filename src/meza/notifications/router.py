"""Notification API endpoints, including push subscription management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from meza.auth.dependencies import get_current_user
from meza.database import get_session
from meza.db.models import Profile
from meza.errors import ValidationError
from meza.notifications.schemas import (
    NotificationCreateRequest,
    NotificationListResponse,
    NotificationResponse,
    NotificationUpdateRequest,
    SubscribeRequest,
    SubscriptionResponse,
    UnreadCountResponse,
    UnsubscribeRequest,
)
from meza.notifications.service import (
    VALID_TYPES,
    create_notification,
    delete_notification,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    set_read,
)
from meza.notifications.subscriptions import subscribe, unsubscribe

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = Query(False),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationListResponse:
    """List own notifications, most recent first."""
    notifications = await get_notifications(db, user.id, limit=limit, unread_only=unread_only)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=await get_unread_count(db, user.id),
    )


@router.post("/notifications", response_model=NotificationResponse, status_code=201)
async def create_own_notification(
    body: NotificationCreateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    """Store a notification for the caller (client-side reminders)."""
    if body.type not in VALID_TYPES:
        raise ValidationError("type", f"must be one of {', '.join(sorted(VALID_TYPES))}")
    notification = await create_notification(
        db, user.id, body.title, body.body, body.type, scheduled_for=body.scheduled_for,
    )
    await db.commit()
    return NotificationResponse.model_validate(notification)


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await get_unread_count(db, user.id))


@router.post("/notifications/read-all")
async def mark_all_read(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    """Mark all notifications as read."""
    count = await mark_all_as_read(db, user.id)
    await db.commit()
    return {"detail": f"Marked {count} notifications as read", "updated": count}


@router.post("/notifications/subscribe", response_model=SubscriptionResponse, status_code=201)
async def subscribe_push(
    body: SubscribeRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionResponse:
    """Register a browser push endpoint."""
    subscription = await subscribe(
        db, user.id, body.endpoint, body.keys.p256dh, body.keys.auth, user_agent=body.user_agent,
    )
    await db.commit()
    return SubscriptionResponse.model_validate(subscription)


@router.post("/notifications/unsubscribe")
async def unsubscribe_push(
    body: UnsubscribeRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Deactivate a browser push endpoint."""
    found = await unsubscribe(db, user.id, body.endpoint)
    if not found:
        raise HTTPException(status_code=404, detail="Subscription not found")
    await db.commit()
    return {"detail": "Unsubscribed"}


@router.patch("/notifications/{notification_id}", response_model=NotificationResponse)
async def update_notification(
    notification_id: str,
    body: NotificationUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    """Mark a notification read or unread."""
    notification = await set_read(db, user.id, notification_id, body.is_read)
    await db.commit()
    return NotificationResponse.model_validate(notification)


@router.delete("/notifications/{notification_id}", status_code=204)
async def remove_notification(
    notification_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Response:
    await delete_notification(db, user.id, notification_id)
    await db.commit()
    return Response(status_code=204)
