"""
Authentication utilities.

The identity provider hands us an opaque, read-only user handle: a stable
id and an email. Production tokens are Supabase JWTs; in local development
a `dev:<user_id>:<email>` token stands in for a demo user.
"""

import logging

from fastapi import HTTPException, Header
from pydantic import BaseModel

from onboarding.config import settings
from onboarding.exceptions import NotAuthenticatedError

logger = logging.getLogger(__name__)

DEV_TOKEN_PREFIX = "dev:"


class AuthenticatedUser(BaseModel):
    """Authenticated user info from the identity provider."""
    id: str
    email: str | None
    access_token: str = ""


def require_user(user: AuthenticatedUser | None) -> AuthenticatedUser:
    """Raise NotAuthenticatedError unless a user is present."""
    if user is None or not user.id:
        raise NotAuthenticatedError("This operation requires an authenticated user")
    return user


def _dev_user(access_token: str) -> AuthenticatedUser | None:
    """Parse a local demo token, only honoured with the local backend in development."""
    if not access_token.startswith(DEV_TOKEN_PREFIX):
        return None
    if settings.storage_backend != "local" or not settings.is_development:
        return None
    _, _, rest = access_token.partition(DEV_TOKEN_PREFIX)
    user_id, _, email = rest.partition(":")
    if not user_id:
        return None
    return AuthenticatedUser(id=user_id, email=email or None, access_token=access_token)


async def get_current_user(authorization: str = Header(None)) -> AuthenticatedUser:
    """
    Validate the bearer token and extract user info.

    Expects Authorization header: "Bearer <access_token>"
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    access_token = authorization[7:]  # Remove "Bearer " prefix

    dev_user = _dev_user(access_token)
    if dev_user is not None:
        return dev_user

    try:
        from onboarding.db.client import get_service_client

        client = get_service_client()
        user_response = client.auth.get_user(access_token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = user_response.user
        return AuthenticatedUser(
            id=user.id,
            email=user.email,
            access_token=access_token,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Auth validation failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
