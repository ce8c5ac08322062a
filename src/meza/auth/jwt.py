"""
HS256 access token verification.

Tokens are issued by the hosted auth provider (Supabase-compatible): the
``sub`` claim is the user id and ``aud`` is ``authenticated``. The API only
verifies them; ``create_access_token`` exists for local tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from meza.config import get_settings


def create_access_token(
    user_id: str,
    email: str | None = None,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """
    Create a signed access token.

    Args:
        user_id: The profile id, stored as the subject.
        email: Optional email claim.
        expires_in: Token lifetime.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": user_id,
        "aud": settings.jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)

    return payload
