"""
shared/utils/security.py
JWT creation/verification for the (actor_id, role) identity passed to the core.
Tokens are issued by the session service; create_access_token exists for
internal tooling and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import Settings, get_settings


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    actor_id: str,
    role: str,
    extra: Optional[dict] = None,
    settings: Optional[Settings] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token.
    Returns (token, jti).
    """
    settings = settings or get_settings()
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(actor_id),
        "role": role,
        "jti": jti,
        "iat": now,
        "exp": expire,
        "type": "access",
        **(extra or {}),
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str, settings: Optional[Settings] = None) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    settings = settings or get_settings()
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    if not payload.get("sub") or not payload.get("role"):
        raise JWTError("Token is missing identity claims")
    return payload
