"""
Local subscription cache.

One row per user mirroring the last known Stripe subscription. It only
decides whether a full remote sync is needed; it is never the entitlement
source of truth.
"""
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storyline.core.config import settings
from storyline.core.database import get_db_session, stripe_subscriptions, user_status, as_utc, utcnow
from storyline.models.entitlement import PLAN_PREMIUM
from storyline.models.subscription import LocalSubscriptionStatus, SubscriptionSnapshot, SyncReason

logger = logging.getLogger(__name__)


def _row_to_snapshot(row) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        user_id=row.user_id,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        subscription_status=row.subscription_status,
        current_period_start=as_utc(row.current_period_start),
        current_period_end=as_utc(row.current_period_end),
        cancel_at_period_end=bool(row.cancel_at_period_end),
        updated_at=as_utc(row.updated_at),
    )


def get_cached_subscription(user_id: str) -> Optional[SubscriptionSnapshot]:
    with get_db_session() as session:
        row = session.execute(
            select(stripe_subscriptions).where(stripe_subscriptions.c.user_id == user_id)
        ).first()
    return _row_to_snapshot(row) if row else None


def upsert_subscription_cache(snapshot: SubscriptionSnapshot) -> None:
    """Insert-or-replace keyed on user_id (last write wins)."""
    values = {
        "stripe_customer_id": snapshot.stripe_customer_id,
        "stripe_subscription_id": snapshot.stripe_subscription_id,
        "subscription_status": snapshot.subscription_status,
        "current_period_start": snapshot.current_period_start,
        "current_period_end": snapshot.current_period_end,
        "cancel_at_period_end": snapshot.cancel_at_period_end,
        "updated_at": snapshot.updated_at or utcnow(),
    }
    update_stmt = (
        update(stripe_subscriptions)
        .where(stripe_subscriptions.c.user_id == snapshot.user_id)
        .values(**values)
    )
    with get_db_session() as session:
        result = session.execute(update_stmt)
        if result.rowcount:
            return
    try:
        with get_db_session() as session:
            session.execute(insert(stripe_subscriptions).values(user_id=snapshot.user_id, **values))
    except IntegrityError:
        # A concurrent sync inserted the row between our update and insert
        with get_db_session() as session:
            session.execute(update_stmt)


def check_local_subscription_status(
    user_id: str,
    now: Optional[datetime] = None,
    stale_after: Optional[timedelta] = None,
) -> Optional[LocalSubscriptionStatus]:
    """
    Cache-only status check.

    Returns None when the cache cannot be read (callers treat that as
    "sync needed"). A missing row means expired and needs sync.
    """
    now = as_utc(now) if now else utcnow()
    stale_after = stale_after or timedelta(hours=settings.SUBSCRIPTION_STALE_HOURS)
    try:
        cached = get_cached_subscription(user_id)
    except SQLAlchemyError:
        logger.error("[subscription] local cache read failed", exc_info=True, extra={"user_id": user_id})
        return None

    if cached is None:
        return LocalSubscriptionStatus(is_expired=True, needs_sync=True)

    period_end = cached.current_period_end
    is_expired = bool(period_end and now > period_end)
    is_stale = cached.updated_at is None or (now - cached.updated_at) > stale_after
    needs_sync = (
        (is_expired and cached.cancel_at_period_end)
        or is_stale
        or cached.subscription_status != "active"
    )
    return LocalSubscriptionStatus(
        is_expired=is_expired,
        needs_sync=needs_sync,
        subscription_end=period_end,
        cancel_at_period_end=cached.cancel_at_period_end,
    )


def should_perform_full_sync(user_id: str, reason: SyncReason, now: Optional[datetime] = None) -> bool:
    if reason.is_critical:
        return True
    local = check_local_subscription_status(user_id, now)
    if local is None:
        return True
    return local.needs_sync


def find_expiring_cancellations(now: Optional[datetime] = None, limit: int = 500) -> List[str]:
    """
    Premium users whose cached period has ended while set to cancel at period end.

    Users already downgraded keep their lapsed cache row, so they are filtered
    out on the entitlement record. Custom premium users never downgrade.
    """
    now = as_utc(now) if now else utcnow()
    with get_db_session() as session:
        rows = session.execute(
            select(stripe_subscriptions.c.user_id)
            .join(user_status, user_status.c.user_id == stripe_subscriptions.c.user_id)
            .where(
                and_(
                    user_status.c.plan_indicator == PLAN_PREMIUM,
                    user_status.c.custom_premium == 0,
                    stripe_subscriptions.c.cancel_at_period_end.is_(True),
                    stripe_subscriptions.c.current_period_end.is_not(None),
                    stripe_subscriptions.c.current_period_end < now,
                )
            )
            .order_by(stripe_subscriptions.c.current_period_end)
            .limit(limit)
        ).all()
    return [row.user_id for row in rows]
