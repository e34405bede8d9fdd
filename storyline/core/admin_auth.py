"""
Admin authentication for debug/support operations.

Admin routes (custom premium override, manual expiration sweeps) require the
shared X-Admin-Key header. Actors are identified by a short key hash so logs
never carry the key itself.
"""
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from storyline.core.config import settings
from storyline.core.errors import PermissionError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "admin_key:<hash prefix>"
    auth_mechanism: str = "x_admin_key"


def get_admin_api_key() -> Optional[str]:
    """ADMIN_API_KEY env var wins over settings.ADMIN_KEY."""
    return os.getenv("ADMIN_API_KEY") or settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """Return the actor for a valid X-Admin-Key header, else None."""
    expected = get_admin_api_key()
    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not expected or not header_key:
        return None
    if not hmac.compare_digest(header_key.encode("utf-8"), expected.encode("utf-8")):
        return None
    digest = hashlib.sha256(header_key.encode("utf-8")).hexdigest()[:12]
    return AdminActor(actor_id=f"admin_key:{digest}")


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency guarding admin routes."""
    actor = verify_admin_key(request)
    if actor is None:
        raise PermissionError("Admin access required (X-Admin-Key)")
    return actor
