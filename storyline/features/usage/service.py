"""
storyline/features/usage/service.py

Usage accounting and the advisory usage gate.

Handles:
- Usage event emission
- Calendar-month counting (reset is implicit: counts are reduced from timestamps)
- Plan-dependent limits producing a soft "blocked" state

Nothing here prevents a write. The gate only tells the client to offer
"wait until next cycle" or "upgrade".
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import logging

from sqlalchemy import select, insert, func

from storyline.core.database import get_db_session, usage_events, as_utc, utcnow
from storyline.core.metrics import usage_gate_blocked_total
from storyline.features.entitlements.store import EntitlementStore
from storyline.models.entitlement import Plan
from storyline.models.usage import UNLIMITED, UsageCheck, UsageEvent, UsageSummary, UsageType

logger = logging.getLogger(__name__)


PLAN_LIMITS: Dict[Plan, Dict[UsageType, int]] = {
    Plan.BASIC: {
        UsageType.BEHAVIORAL: 5,
        UsageType.QUESTION_VAULT: 1,
    },
    Plan.PREMIUM: {
        UsageType.BEHAVIORAL: UNLIMITED,
        UsageType.QUESTION_VAULT: UNLIMITED,
    },
}

_LABELS = {
    UsageType.BEHAVIORAL: "behavioral practices",
    UsageType.QUESTION_VAULT: "question vaults",
}


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    return as_utc(now)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[start, end) of the UTC calendar month containing now."""
    now = as_utc(now)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def month_year(now: datetime) -> str:
    return as_utc(now).strftime("%Y-%m")


def limit_for(plan: Plan, usage_type: UsageType) -> int:
    return PLAN_LIMITS[plan][usage_type]


def record_usage(
    user_id: str,
    usage_type: UsageType,
    now: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> UsageEvent:
    """Append a usage event. Never consults the gate."""
    occurred_at = _normalize_now(now)
    with get_db_session() as session:
        session.execute(
            insert(usage_events).values(
                user_id=user_id,
                usage_key=usage_type.value,
                occurred_at=occurred_at,
                metadata=metadata,
            )
        )
    return UsageEvent(user_id=user_id, usage_key=usage_type.value, occurred_at=occurred_at, metadata=metadata)


def get_monthly_count(user_id: str, usage_type: UsageType, now: Optional[datetime] = None) -> int:
    start, end = month_bounds(_normalize_now(now))
    with get_db_session() as session:
        return session.execute(
            select(func.count())
            .select_from(usage_events)
            .where(
                usage_events.c.user_id == user_id,
                usage_events.c.usage_key == usage_type.value,
                usage_events.c.occurred_at >= start,
                usage_events.c.occurred_at < end,
            )
        ).scalar_one()


def _gate_message(usage_type: UsageType, limit: int, now: datetime) -> str:
    _, next_cycle = month_bounds(now)
    return (
        f"You've used all {limit} {_LABELS[usage_type]} included this month. "
        f"Upgrade to Premium or wait until {next_cycle.date().isoformat()} for your next cycle."
    )


def _build_check(usage_type: UsageType, count: int, plan: Plan, now: datetime) -> UsageCheck:
    limit = limit_for(plan, usage_type)
    blocked = limit != UNLIMITED and count >= limit
    remaining = UNLIMITED if limit == UNLIMITED else max(0, limit - count)
    return UsageCheck(
        usage_type=usage_type,
        count=count,
        limit=limit,
        remaining=remaining,
        blocked=blocked,
        is_premium=plan is Plan.PREMIUM,
        month_year=month_year(now),
        message=_gate_message(usage_type, limit, now) if blocked else None,
    )


def check_usage(
    store: EntitlementStore,
    user_id: str,
    usage_type: UsageType,
    now: Optional[datetime] = None,
) -> UsageCheck:
    now = _normalize_now(now)
    plan = store.get_effective_plan(user_id)
    check = _build_check(usage_type, get_monthly_count(user_id, usage_type, now), plan, now)
    if check.blocked:
        usage_gate_blocked_total.inc(labels={"usage_type": usage_type.value})
        logger.info(
            "[usage] soft gate reached",
            extra={"user_id": user_id, "usage_type": usage_type.value, "count": check.count, "limit": check.limit},
        )
    return check


def get_usage_summary(store: EntitlementStore, user_id: str, now: Optional[datetime] = None) -> UsageSummary:
    now = _normalize_now(now)
    plan = store.get_effective_plan(user_id)
    return UsageSummary(
        user_id=user_id,
        month_year=month_year(now),
        is_premium=plan is Plan.PREMIUM,
        behavioral=_build_check(
            UsageType.BEHAVIORAL, get_monthly_count(user_id, UsageType.BEHAVIORAL, now), plan, now
        ),
        question_vault=_build_check(
            UsageType.QUESTION_VAULT, get_monthly_count(user_id, UsageType.QUESTION_VAULT, now), plan, now
        ),
    )
