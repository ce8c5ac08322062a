"""Pydantic schemas for challenge endpoints.

Create/update bodies accept loosely typed values; ``validate_challenge_input``
is the single place that decides whether a field is acceptable, so bad input
is reported as a 400 naming the offending field.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChallengeCreateRequest(BaseModel):
    target_time: Any = Field(None, description="Wake-up deadline as HH:MM", examples=["07:00"])
    penalty_amount: Any = Field(None, description="Penalty in the smallest currency unit", examples=[500])
    home_latitude: Any = None
    home_longitude: Any = None
    home_address: str | None = None
    target_latitude: Any = None
    target_longitude: Any = None
    target_address: str | None = None
    wake_up_location_lat: Any = None
    wake_up_location_lng: Any = None
    wake_up_location_address: str | None = None


class ChallengeUpdateRequest(ChallengeCreateRequest):
    """Partial update of a pending challenge; unset fields keep their value."""


class StartChallengeRequest(BaseModel):
    challenge_id: str
    target_datetime: datetime


class ArrivalRequest(BaseModel):
    latitude: Any = None
    longitude: Any = None
    address: str | None = Field(None, max_length=512)


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: str
    target_time: str
    penalty_amount: int
    home_latitude: float
    home_longitude: float
    home_address: str
    target_latitude: float
    target_longitude: float
    target_address: str
    wake_up_location_lat: float | None = None
    wake_up_location_lng: float | None = None
    wake_up_location_address: str | None = None
    started_at: datetime | None = None
    ends_at: datetime | None = None
    completed_at: datetime | None = None
    completion_lat: float | None = None
    completion_lng: float | None = None
    completion_address: str | None = None
    distance_to_target: float | None = None
    payment_intent_id: str | None = None
    evidence: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]
    total: int


class ActiveChallengeResponse(BaseModel):
    challenge: ChallengeResponse | None = None
    is_expired: bool = False
    time_remaining_seconds: int = 0


class TransitionResponse(BaseModel):
    challenge: ChallengeResponse
    notified: bool
    charge_requested: bool = False
    charge_succeeded: bool | None = None
    charge_error: str | None = None
    degraded: bool = False


class ExpireCheckResponse(TransitionResponse):
    expired: bool


class ChallengeStatsResponse(BaseModel):
    period: str
    total_challenges: int
    completed: int
    failed: int
    success_rate: float
    total_penalty: int
    average_penalty: float
    best_streak: int
    current_streak: int
    average_distance_to_target: float | None = None


class ServerTimeResponse(BaseModel):
    now: datetime
    timestamp_ms: int


class EvidenceRequest(BaseModel):
    evidence_type: str | None = Field(None, examples=["photo"])
    evidence_data: Any = None
    metadata: dict[str, Any] | None = None


class EvidenceResponse(BaseModel):
    challenge_id: str
    status: str
    evidence: dict[str, Any] | None = None
    completion_address: str | None = None
    completed_at: datetime | None = None
    has_evidence: bool
