"""
Daily subscription expiration check.

Finds premium users whose cached subscription ended while set to cancel at
period end and runs a critical sync for each, so lapsed users drop to basic
even when they never open the app. Downgraded users are not picked again.

Run directly:
    python -m storyline.workers.subscription_expiry [--limit N]
or enqueue `expiration_check_job` on the RQ "default" queue.
"""
from datetime import datetime
from typing import Dict, Optional
import argparse
import logging

from storyline.core.config import settings
from storyline.core.database import as_utc, utcnow
from storyline.core.metrics import subscription_syncs_total
from storyline.features.billing.cache import find_expiring_cancellations
from storyline.features.billing.provider import BillingProvider
from storyline.features.billing.service import get_provider
from storyline.features.billing.sync import sync_subscription
from storyline.features.entitlements.store import EntitlementStore
from storyline.models.entitlement import Plan
from storyline.models.subscription import SyncReason

logger = logging.getLogger("storyline.workers.subscription_expiry")


def run_daily_expiration_check(
    store: EntitlementStore,
    provider: Optional[BillingProvider],
    now: Optional[datetime] = None,
    limit: int = 500,
) -> Dict[str, object]:
    now = as_utc(now) if now else utcnow()
    report = {"candidates": 0, "downgraded": 0, "still_premium": 0, "errors": 0, "skipped": False}

    if provider is None:
        logger.warning("[expiry] billing disabled, skipping expiration check")
        report["skipped"] = True
        return report

    reason = SyncReason.DAILY_EXPIRATION_CHECK
    for user_id in find_expiring_cancellations(now, limit=limit):
        report["candidates"] += 1
        try:
            outcome = sync_subscription(user_id, None, provider, store, now=now)
        except Exception:
            # One bad account must not stop the sweep
            report["errors"] += 1
            subscription_syncs_total.inc(labels={"reason": reason.value, "outcome": "error"})
            logger.error("[expiry] sync failed", exc_info=True, extra={"user_id": user_id})
            continue
        subscription_syncs_total.inc(labels={"reason": reason.value, "outcome": outcome.plan.value})
        if outcome.plan is Plan.BASIC:
            report["downgraded"] += 1
        else:
            report["still_premium"] += 1

    logger.info("[expiry] expiration check finished", extra={"timestamp": now.isoformat(), **report})
    return report


def expiration_check_job(limit: int = 500) -> Dict[str, object]:
    """RQ entry point; builds its own store and provider."""
    return run_daily_expiration_check(
        EntitlementStore(initial_credit_balance=settings.INITIAL_CREDIT_BALANCE),
        get_provider(),
        limit=limit,
    )


def main() -> int:
    from storyline.core.logging import configure_logging

    configure_logging()
    parser = argparse.ArgumentParser(description="Downgrade users whose cancelled subscriptions have lapsed.")
    parser.add_argument("--limit", type=int, default=500, help="Maximum accounts to check in one run.")
    args = parser.parse_args()

    report = expiration_check_job(limit=args.limit)
    print(report)
    return 1 if report["errors"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
