"""Challenge API endpoints: CRUD, start, arrival, expiry, stats and server time."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from meza.auth.dependencies import get_current_user
from meza.challenges.evidence import get_evidence, submit_evidence
from meza.challenges.lifecycle import ChallengeLifecycle, ChallengeStatus, TransitionResult
from meza.challenges.schemas import (
    ActiveChallengeResponse,
    ArrivalRequest,
    ChallengeCreateRequest,
    ChallengeListResponse,
    ChallengeResponse,
    ChallengeStatsResponse,
    ChallengeUpdateRequest,
    EvidenceRequest,
    EvidenceResponse,
    ExpireCheckResponse,
    ServerTimeResponse,
    StartChallengeRequest,
    TransitionResponse,
)
from meza.challenges.service import get_challenge, get_stats, list_challenges
from meza.challenges.time_utils import is_expired, now_utc
from meza.challenges.validator import validate_location
from meza.database import get_session
from meza.db.models import Challenge, Profile
from meza.dependencies import get_lifecycle
from meza.errors import InvalidTransition, ValidationError

router = APIRouter(prefix="/api/v1", tags=["Challenges"])


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        challenge=ChallengeResponse.model_validate(result.challenge),
        notified=result.notified,
        charge_requested=result.charge_requested,
        charge_succeeded=result.charge_succeeded,
        charge_error=result.charge_error,
        degraded=result.degraded,
    )


# ---------------------------------------------------------------------------
# Server time
# ---------------------------------------------------------------------------


@router.get("/time", response_model=ServerTimeResponse, tags=["Time"])
async def server_time() -> ServerTimeResponse:
    """Authoritative UTC time for client countdowns."""
    now = now_utc()
    return ServerTimeResponse(now=now, timestamp_ms=int(now.timestamp() * 1000))


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_my_challenges(
    status: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ChallengeListResponse:
    """List own challenges, newest first."""
    if status is not None and status not in {s.value for s in ChallengeStatus}:
        raise ValidationError("status", f"must be one of {', '.join(s.value for s in ChallengeStatus)}")
    challenges = await list_challenges(db, user.id, status=status, limit=limit)
    return ChallengeListResponse(
        challenges=[ChallengeResponse.model_validate(c) for c in challenges],
        total=len(challenges),
    )


@router.post("/challenges", response_model=TransitionResponse, status_code=201)
async def create_challenge(
    body: ChallengeCreateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> TransitionResponse:
    """Create a pending challenge."""
    result = await lifecycle.create(db, user.id, body.model_dump())
    return _transition_response(result)


@router.get("/challenges/stats", response_model=ChallengeStatsResponse)
async def challenge_stats(
    period: str = Query("all"),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ChallengeStatsResponse:
    """Success rate, penalties and streaks over a period."""
    stats = await get_stats(db, user.id, period)
    return ChallengeStatsResponse(**stats)


# ---------------------------------------------------------------------------
# Active challenge
# ---------------------------------------------------------------------------


@router.get("/challenges/active", response_model=ActiveChallengeResponse)
async def get_active(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> ActiveChallengeResponse:
    """The caller's active challenge with its countdown."""
    challenge = await lifecycle.get_active_challenge_for(db, user.id)
    if challenge is None:
        return ActiveChallengeResponse()
    now = now_utc()
    return ActiveChallengeResponse(
        challenge=ChallengeResponse.model_validate(challenge),
        is_expired=challenge.ends_at is not None and is_expired(challenge.ends_at, now),
        time_remaining_seconds=lifecycle.time_remaining(challenge, now),
    )


@router.post("/challenges/active", response_model=TransitionResponse)
async def start_challenge(
    body: StartChallengeRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> TransitionResponse:
    """Start a pending challenge with the given deadline."""
    result = await lifecycle.start(db, user.id, body.challenge_id, body.target_datetime)
    return _transition_response(result)


# ---------------------------------------------------------------------------
# Single challenge
# ---------------------------------------------------------------------------


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_one(
    challenge_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ChallengeResponse:
    challenge = await get_challenge(db, user.id, challenge_id)
    return ChallengeResponse.model_validate(challenge)


@router.patch("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def update_one(
    challenge_id: str,
    body: ChallengeUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> ChallengeResponse:
    """Edit a pending challenge."""
    challenge = await lifecycle.update(db, user.id, challenge_id, body.model_dump(exclude_unset=True))
    return ChallengeResponse.model_validate(challenge)


@router.delete("/challenges/{challenge_id}", status_code=204)
async def delete_one(
    challenge_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> Response:
    """Delete a pending challenge."""
    await lifecycle.delete(db, user.id, challenge_id)
    return Response(status_code=204)


@router.post("/challenges/{challenge_id}/complete", response_model=TransitionResponse)
async def confirm_arrival(
    challenge_id: str,
    body: ArrivalRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> TransitionResponse:
    """Report arrival at the target; completes the challenge when in range."""
    location = validate_location(body.latitude, body.longitude)
    result = await lifecycle.confirm_arrival(db, user.id, challenge_id, location, body.address)
    return _transition_response(result)


@router.post("/challenges/{challenge_id}/expire", response_model=ExpireCheckResponse)
async def check_expired(
    challenge_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    lifecycle: ChallengeLifecycle = Depends(get_lifecycle),
) -> ExpireCheckResponse:
    """Fail the challenge if its deadline has passed. Safe to call repeatedly."""
    try:
        result = await lifecycle.expire(db, challenge_id, user_id=user.id)
    except InvalidTransition:
        challenge = await get_challenge(db, user.id, challenge_id)
        if challenge.status == ChallengeStatus.PENDING:
            raise
        return ExpireCheckResponse(
            challenge=ChallengeResponse.model_validate(challenge),
            notified=False,
            expired=challenge.status == ChallengeStatus.FAILED,
        )
    return ExpireCheckResponse(expired=True, **_transition_response(result).model_dump())


def _evidence_response(challenge: Challenge) -> EvidenceResponse:
    return EvidenceResponse(
        challenge_id=challenge.id,
        status=challenge.status,
        evidence=challenge.evidence,
        completion_address=challenge.completion_address,
        completed_at=challenge.completed_at,
        has_evidence=challenge.evidence is not None,
    )


@router.get("/challenges/{challenge_id}/evidence", response_model=EvidenceResponse)
async def read_evidence(
    challenge_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> EvidenceResponse:
    challenge = await get_evidence(db, user.id, challenge_id)
    return _evidence_response(challenge)


@router.post("/challenges/{challenge_id}/evidence", response_model=EvidenceResponse)
async def add_evidence(
    challenge_id: str,
    body: EvidenceRequest,
    request: Request,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> EvidenceResponse:
    """Attach proof of arrival to the active challenge."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else None
    challenge = await submit_evidence(
        db,
        user.id,
        challenge_id,
        body.evidence_type,
        body.evidence_data,
        metadata=body.metadata,
        user_agent=request.headers.get("User-Agent"),
        ip_address=client_ip,
    )
    return _evidence_response(challenge)
