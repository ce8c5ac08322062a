"""Payment provider webhooks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from meza.config import get_settings
from meza.database import get_session
from meza.payments.webhooks import WebhookSignatureError, handle_stripe_event, verify_stripe_signature

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool]:
    """Reconcile penalty payments from Stripe events. Unauthenticated; the signature is the credential."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=503, detail="Payment webhooks are not configured")

    payload = await request.body()
    try:
        event = verify_stripe_signature(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=f"Webhook signature verification failed: {e}") from e

    await handle_stripe_event(db, event)
    return {"received": True}
