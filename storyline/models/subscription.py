"""
storyline/models/subscription.py

Subscription reconciliation models: trigger reasons, the local cache view,
and the outcome of a full sync.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from storyline.models.entitlement import Plan


class SyncReason(str, Enum):
    APP_INITIALIZATION = "app_initialization"
    STRIPE_PORTAL_RETURN = "stripe_portal_return"
    DAILY_EXPIRATION_CHECK = "daily_expiration_check"
    PERIODIC_CHECK = "periodic_check"
    VISIBILITY_CHANGE = "visibility_change"
    WINDOW_FOCUS = "window_focus"
    MANUAL = "manual"

    @property
    def is_critical(self) -> bool:
        return self in CRITICAL_REASONS


CRITICAL_REASONS = frozenset({
    SyncReason.APP_INITIALIZATION,
    SyncReason.STRIPE_PORTAL_RETURN,
    SyncReason.DAILY_EXPIRATION_CHECK,
})


class SubscriptionSnapshot(BaseModel):
    """Row of the local subscription cache (one per user)."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    updated_at: Optional[datetime] = None


class LocalSubscriptionStatus(BaseModel):
    """Cache-only view used to decide whether a full remote sync is needed."""
    model_config = ConfigDict(frozen=True)

    is_expired: bool
    needs_sync: bool
    subscription_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class SyncOutcome(BaseModel):
    """Result of one full reconciliation against the billing provider."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan: Plan
    subscribed: bool
    custom_premium: bool = False
    customer_id: Optional[str] = None
    subscription: Optional[SubscriptionSnapshot] = None
    message: Optional[str] = None


class TriggerResult(BaseModel):
    """What the monitor did with a trigger."""
    model_config = ConfigDict(frozen=True)

    reason: SyncReason
    performed: bool
    skipped_because: Optional[str] = None  # "debounced" | "cache_fresh"
    outcome: Optional[SyncOutcome] = None
    error: Optional[str] = None
