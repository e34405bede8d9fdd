"""
Plan status API.

- GET  /api/plan/status: effective plan, override flag and credit balance
- POST /api/plan/toggle: flip the plan tier (development/test only)
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from storyline.api.deps import get_store
from storyline.core.auth import CurrentUser, get_current_user
from storyline.core.config import settings
from storyline.core.errors import PermissionError
from storyline.features.entitlements.store import EntitlementStore
from storyline.models.entitlement import EntitlementRecord


router = APIRouter(prefix="/api/plan", tags=["plan"])


class PlanStatusResponse(BaseModel):
    user_id: str
    plan: str
    is_premium: bool
    plan_indicator: int
    custom_premium: bool
    credit_balance: int
    updated_at: Optional[str] = None


def plan_status_payload(record: EntitlementRecord) -> PlanStatusResponse:
    return PlanStatusResponse(
        user_id=record.user_id,
        plan=record.effective_plan.value,
        is_premium=record.is_premium,
        plan_indicator=record.plan_indicator,
        custom_premium=record.custom_premium == 1,
        credit_balance=record.credit_balance,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


@router.get("/status", response_model=PlanStatusResponse)
def get_plan_status(
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    return plan_status_payload(store.get_record(user.user_id))


@router.post("/toggle", response_model=PlanStatusResponse)
def toggle_plan(
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """Debug toggle between basic and premium. Billing sync may undo it."""
    if settings.ENV.lower() == "production":
        raise PermissionError("Plan toggle is disabled in production")
    store.toggle_user_premium(user.user_id)
    return plan_status_payload(store.get_record(user.user_id))
