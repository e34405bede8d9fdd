"""
Usage gate API (advisory only).

- GET  /api/usage/summary
- GET  /api/usage/{usage_type}
- POST /api/usage/{usage_type}/record

Recording never consults the gate: a blocked user can still record.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from storyline.api.deps import get_store
from storyline.core.auth import CurrentUser, get_current_user
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.usage.service import check_usage, get_usage_summary, record_usage
from storyline.models.usage import UsageCheck, UsageSummary, UsageType


router = APIRouter(prefix="/api/usage", tags=["usage"])


class RecordUsageRequest(BaseModel):
    metadata: Optional[Dict[str, Any]] = None


@router.get("/summary", response_model=UsageSummary)
def usage_summary(
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    return get_usage_summary(store, user.user_id)


@router.get("/{usage_type}", response_model=UsageCheck)
def usage_check(
    usage_type: UsageType,
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    return check_usage(store, user.user_id, usage_type)


@router.post("/{usage_type}/record", response_model=UsageCheck)
def usage_record(
    usage_type: UsageType,
    body: Optional[RecordUsageRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """Append a usage event and return the gate state after it."""
    record_usage(user.user_id, usage_type, metadata=body.metadata if body else None)
    return check_usage(store, user.user_id, usage_type)
