"""Bearer token handling.

Tokens are issued by the upstream identity service; here they are only
verified and their `sub` claim (the owning user's UUID) is read. Every
query in the API is scoped by that id. create_access_token mints tokens of
the same shape for local development and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import jwt

from ..config import get_settings

REQUIRED_CLAIMS = ["sub", "exp"]


def _signing_key() -> str:
    key = get_settings().JWT_SECRET
    if not key:
        raise ValueError("JWT_SECRET is not configured")
    return key


def create_access_token(user_id: UUID, expires_minutes: Optional[int] = None) -> str:
    """Mint an HS256 token whose subject is `user_id`."""
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.JWT_EXPIRY_MINUTES)
    claims = {
        "sub": str(user_id),
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry and return the claims.

    Raises jwt.ExpiredSignatureError for stale tokens and jwt.InvalidTokenError
    for anything else that fails verification.
    """
    return jwt.decode(
        token,
        _signing_key(),
        algorithms=[get_settings().JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )


def user_id_from_token(token: str) -> UUID:
    """Owning user of a verified token.

    Raises:
        jwt.InvalidTokenError: If the token fails verification or `sub` is not a UUID
    """
    subject = decode_token(token)["sub"]
    try:
        return UUID(str(subject))
    except ValueError as e:
        raise jwt.InvalidTokenError(f"sub is not a user id: {subject!r}") from e
