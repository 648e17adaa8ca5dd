"""Staff identity: JWT access tokens issued by the identity provider.

Authentication itself lives outside this service. Tokens are only decoded to
learn which staff member performed an action, for the opened_by / closed_by /
ordered_by stamps.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Optional
import logging

import jwt
from jwt.exceptions import PyJWTError
from fastapi import Depends, Request

from tabkeeper.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True}
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None


class StaffIdentity:
    """Decoded token data.

    Attributes:
        user_id: The staff member's id in the identity provider.
        email: The staff member's email address.
        role: Role claim as issued (owner/manager/staff).
        venue_id: Venue the token was issued for, if any.
    """

    def __init__(self, user_id: int, email: str, role: str, venue_id: Optional[int] = None):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.venue_id = venue_id


async def get_optional_staff(request: Request) -> Optional[StaffIdentity]:
    """Get the acting staff member if a valid token is provided, otherwise None.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie
    """
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if payload is None:
        return None

    try:
        user_id = int(payload.get("sub", 0))
    except (TypeError, ValueError):
        return None
    if not user_id:
        return None

    return StaffIdentity(
        user_id=user_id,
        email=payload.get("email", ""),
        role=payload.get("role", "staff"),
        venue_id=payload.get("venue_id"),
    )


def staff_id(staff: Optional[StaffIdentity]) -> Optional[int]:
    return staff.user_id if staff else None


# Type alias for dependency injection
OptionalStaff = Annotated[Optional[StaffIdentity], Depends(get_optional_staff)]
