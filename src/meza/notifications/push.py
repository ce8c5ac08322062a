"""Publish notifications over Redis pub/sub for the push gateway."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meza.db.models import Notification

logger = logging.getLogger(__name__)

# Where the client should land when the notification is tapped.
NOTIFICATION_URLS = {
    "challenge": "/active-challenge",
    "reminder": "/active-challenge",
    "payment": "/history",
    "payment_error": "/settings/payment",
}


def build_push_payload(notification: "Notification") -> dict[str, object]:
    return {
        "event": "notification",
        "data": {
            "id": notification.id,
            "title": notification.title,
            "body": notification.body,
            "type": notification.type,
            "timestamp": (
                notification.created_at.isoformat()
                if notification.created_at
                else None
            ),
            "url": NOTIFICATION_URLS.get(notification.type, "/"),
        },
    }


async def push_notification_to_user(redis: object | None, notification: "Notification") -> bool:
    """Publish a formatted notification to push:user:{user_id}.

    The push gateway subscribes to ``push:user:*`` and fans the message out to
    the user's registered push subscriptions. Returns True if published.
    """
    if redis is None:
        return False

    try:
        await redis.publish(  # type: ignore[attr-defined]
            f"push:user:{notification.user_id}",
            json.dumps(build_push_payload(notification)),
        )
    except Exception:
        logger.warning(
            "Failed to publish notification to push:user:%s",
            notification.user_id,
            exc_info=True,
        )
        return False
    return True
