"""
Auth utilities for the Storyline API.

Validates Supabase access tokens and extracts the user identity from request context.
Falls back to X-User-Id / X-User-Email headers outside production (tests, local tooling).
"""
from dataclasses import dataclass
from typing import Optional
import logging

import jwt
from fastapi import Header, HTTPException, Request

from storyline.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""
    user_id: str
    email: Optional[str] = None


def verify_supabase_jwt(token: str) -> Optional[CurrentUser]:
    """
    Verify a Supabase access token and extract the caller.

    Args:
        token: JWT from Authorization header (Bearer {token})

    Returns:
        CurrentUser built from the 'sub' and 'email' claims, or None when no
        signing secret is configured.

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.SUPABASE_JWT_SECRET:
        logger.debug("No SUPABASE_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return CurrentUser(user_id=user_id, email=payload.get("email"))


def _header_fallback_allowed() -> bool:
    return settings.ENV.lower() != "production"


def resolve_user(authorization: Optional[str], x_user_id: Optional[str], x_user_email: Optional[str]) -> Optional[CurrentUser]:
    """Shared resolution for HTTP and websocket callers; None when unauthenticated."""
    if authorization and authorization.startswith("Bearer "):
        user = verify_supabase_jwt(authorization[7:])
        if user:
            return user
    if x_user_id and _header_fallback_allowed():
        return CurrentUser(user_id=x_user_id, email=x_user_email)
    return None


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Non-production: caller user ID"),
    x_user_email: Optional[str] = Header(None, description="Non-production: caller email"),
) -> CurrentUser:
    """
    Extract the current user from request context.

    Priority:
    1. Supabase JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. Raise 401 Unauthorized

    After successful auth, the user is mirrored into app_users.
    """
    user = resolve_user(request.headers.get("Authorization"), x_user_id, x_user_email)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization (Bearer JWT) or X-User-Id header",
        )

    from storyline.features.users.service import get_or_create_user
    get_or_create_user(user.user_id, user.email)
    request.state.user_id = user.user_id
    return user
