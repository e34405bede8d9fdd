"""
Subscription reconciliation API.

- POST /api/subscription/sync: run a trigger for the caller

A "manual" sync surfaces failures as 502; every other reason behaves like
the background triggers (debounced, cache-checked, failures logged).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
import asyncio

from storyline.api.deps import get_monitor, get_store
from storyline.api.plan import PlanStatusResponse, plan_status_payload
from storyline.core.auth import CurrentUser, get_current_user
from storyline.features.billing.monitor import SubscriptionMonitor
from storyline.features.entitlements.store import EntitlementStore
from storyline.models.subscription import SyncReason


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class SyncRequest(BaseModel):
    reason: SyncReason = SyncReason.MANUAL


class SyncResponse(BaseModel):
    reason: SyncReason
    performed: bool
    skipped_because: Optional[str] = None
    subscribed: Optional[bool] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status: PlanStatusResponse


@router.post("/sync", response_model=SyncResponse)
async def sync_subscription(
    body: Optional[SyncRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    monitor: SubscriptionMonitor = Depends(get_monitor),
    store: EntitlementStore = Depends(get_store),
):
    """
    Errors:
        502: manual sync failed (subscription_sync_failed)
    """
    reason = body.reason if body else SyncReason.MANUAL
    if reason is SyncReason.MANUAL:
        result = await monitor.manual_sync(user.user_id, user.email)
    else:
        result = await monitor.trigger(user.user_id, user.email, reason)

    record = await asyncio.to_thread(store.get_record, user.user_id)
    return SyncResponse(
        reason=result.reason,
        performed=result.performed,
        skipped_because=result.skipped_because,
        subscribed=result.outcome.subscribed if result.outcome else None,
        message=result.outcome.message if result.outcome else None,
        error=result.error,
        status=plan_status_payload(record),
    )
