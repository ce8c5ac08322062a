"""Pydantic schemas for payment records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    challenge_id: str
    amount: int
    currency: str
    status: str
    provider_reference: str | None = None
    error_code: str | None = None
    retry_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
