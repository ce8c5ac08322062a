"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from meza.auth.jwt import verify_token
from meza.database import get_session
from meza.db.models import Profile
from meza.users.service import get_or_create_profile

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Profile:
    """
    Extract and verify the bearer token, return the caller's Profile.

    The profile is created on the first authenticated request.
    Raises 401 on an invalid token.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    profile = await get_or_create_profile(db, payload["sub"], payload.get("email"))
    await db.commit()
    return profile
