"""
Full subscription reconciliation against the billing provider.

Order of precedence:
1. custom_premium override: re-assert premium, no provider call at all
2. no billing customer for the email: basic
3. an active subscription: premium, and the local cache row is upserted
4. otherwise: basic

"No customer" and "no subscription" are valid terminal states, not errors.
"""
from datetime import datetime
from typing import Optional
import logging

from storyline.core.database import utcnow
from storyline.core.errors import ValidationError
from storyline.features.billing.cache import upsert_subscription_cache
from storyline.features.billing.provider import BillingProvider
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.users.service import get_user
from storyline.models.entitlement import Plan
from storyline.models.subscription import SubscriptionSnapshot, SyncOutcome

logger = logging.getLogger(__name__)


def _resolve_email(user_id: str, email: Optional[str]) -> str:
    if email:
        return email
    user = get_user(user_id)
    if user and user.email:
        return user.email
    raise ValidationError(f"No email on record for user {user_id}; cannot look up billing customer")


def sync_subscription(
    user_id: str,
    email: Optional[str],
    provider: BillingProvider,
    store: EntitlementStore,
    now: Optional[datetime] = None,
) -> SyncOutcome:
    if store.is_custom_premium(user_id):
        store.make_user_premium(user_id)
        logger.info("[subscription] custom premium override kept premium", extra={"user_id": user_id})
        return SyncOutcome(
            user_id=user_id,
            plan=Plan.PREMIUM,
            subscribed=True,
            custom_premium=True,
            message="User has custom premium override, maintained premium status",
        )

    customer_id = provider.find_customer_by_email(_resolve_email(user_id, email))
    if customer_id is None:
        store.make_user_basic(user_id)
        logger.info("[subscription] no billing customer, set basic", extra={"user_id": user_id})
        return SyncOutcome(user_id=user_id, plan=Plan.BASIC, subscribed=False, message="No subscription found")

    subscriptions = provider.list_active_subscriptions(customer_id, limit=1)
    if not subscriptions:
        store.make_user_basic(user_id)
        logger.info(
            "[subscription] no active subscription, set basic",
            extra={"user_id": user_id, "customer_id": customer_id},
        )
        return SyncOutcome(user_id=user_id, plan=Plan.BASIC, subscribed=False, customer_id=customer_id)

    active = subscriptions[0]
    store.make_user_premium(user_id)
    snapshot = SubscriptionSnapshot(
        user_id=user_id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=active.id,
        subscription_status=active.status,
        current_period_start=active.current_period_start,
        current_period_end=active.current_period_end,
        cancel_at_period_end=active.cancel_at_period_end,
        updated_at=now or utcnow(),
    )
    upsert_subscription_cache(snapshot)
    logger.info(
        "[subscription] active subscription, set premium",
        extra={"user_id": user_id, "subscription_id": active.id, "cancel_at_period_end": active.cancel_at_period_end},
    )
    return SyncOutcome(
        user_id=user_id,
        plan=Plan.PREMIUM,
        subscribed=True,
        customer_id=customer_id,
        subscription=snapshot,
    )
