"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
The JWT carries the caller's identity; the core never looks users up.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from shared.models.actor import Actor
from shared.models.models import ActorRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.actor_id: str = payload["sub"]
        self.role: ActorRole = ActorRole(payload["role"])


async def get_token_data(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenData:
    """Extract and validate JWT from Authorization header."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials, request.app.state.settings)
        return TokenData(payload)
    except (JWTError, ValueError, KeyError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_actor(
    token_data: TokenData = Depends(get_token_data),
) -> Actor:
    """
    Resolve the calling actor. The system role is reserved for the timer
    worker and is never accepted from a bearer token.
    """
    if token_data.role == ActorRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System identity cannot be used over HTTP",
        )
    return Actor(actor_id=token_data.actor_id, role=token_data.role)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: ActorRole):
        self.roles = roles

    async def __call__(
        self,
        actor: Actor = Depends(get_current_actor),
    ) -> Actor:
        if actor.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return actor


# Convenience role dependencies
require_customer = RoleRequired(ActorRole.CUSTOMER)
require_party = RoleRequired(ActorRole.CUSTOMER, ActorRole.MODEL)
require_admin = RoleRequired(ActorRole.ADMIN)
