"""
storyline/models/entitlement.py

Entitlement record and plan tier.

The record keeps the plan tier (0 basic / 1 premium), the admin-only custom
premium override and the consumable credit balance as separate fields.
"""

from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict


PLAN_BASIC = 0
PLAN_PREMIUM = 1


class Plan(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"


class EntitlementRecord(BaseModel):
    """
    Per-user entitlement state.

    Invariant: custom_premium == 1 means the effective plan is premium
    regardless of plan_indicator or billing state.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_indicator: int = PLAN_BASIC
    custom_premium: int = 0
    credit_balance: int = 0
    updated_at: Optional[datetime] = None

    @property
    def effective_plan(self) -> Plan:
        if self.custom_premium == 1:
            return Plan.PREMIUM
        return Plan.PREMIUM if self.plan_indicator == PLAN_PREMIUM else Plan.BASIC

    @property
    def is_premium(self) -> bool:
        return self.effective_plan is Plan.PREMIUM


class PlanChange(BaseModel):
    """Published on the token event bus after every committed entitlement write.

    Subscribers treat it as an invalidation signal and re-read the store.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_indicator: int
    credit_balance: int
    source: str


T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """Typed success/failure result for call sites that must not raise."""
    model_config = ConfigDict(frozen=True)

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str) -> "OperationResult[T]":
        return cls(success=False, error=error)
