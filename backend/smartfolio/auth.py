"""
Authentication dependency for FastAPI endpoints.

Sessions are issued by Supabase Auth; this module only verifies the bearer
token via auth.get_user() and exposes the resulting user as a dependency.
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer()


class AuthenticatedUser(BaseModel):
    """Represents a verified authenticated user."""

    id: str
    email: str | None = None


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency that verifies a JWT Bearer token via Supabase.

    Raises:
        HTTPException 503: Supabase client not configured.
        HTTPException 401: Token is invalid, expired, or user not found.
    """
    supabase = getattr(request.app.state, "supabase", None)
    if supabase is None:
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    try:
        response = await supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.warning("auth_token_verification_failed", error=str(e))
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = response.user if response else None
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return AuthenticatedUser(id=str(user.id), email=user.email)


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
