"""
Admin/debug API (X-Admin-Key).

- POST /api/admin/users/{user_id}/custom-premium/toggle
"""
import logging

from fastapi import APIRouter, Depends

from storyline.api.deps import get_store
from storyline.api.plan import PlanStatusResponse, plan_status_payload
from storyline.core.admin_auth import AdminActor, require_admin
from storyline.features.entitlements.store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/users/{user_id}/custom-premium/toggle", response_model=PlanStatusResponse)
def toggle_custom_premium(
    user_id: str,
    actor: AdminActor = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    """Flip the override that keeps a user premium regardless of billing."""
    flag = store.toggle_custom_premium(user_id)
    logger.info(
        "[admin] custom premium toggled",
        extra={"actor": actor.actor_id, "user_id": user_id, "custom_premium": flag},
    )
    return plan_status_payload(store.get_record(user_id))
