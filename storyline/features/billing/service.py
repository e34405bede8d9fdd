"""
Billing service orchestrator.

Coordinates:
- Checkout and customer portal sessions
- Webhook processing (verified, idempotent, converted into a full sync)
- The billing view of the local subscription cache

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import os
from dataclasses import dataclass
from typing import Dict, Optional
import logging

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from storyline.core.config import settings
from storyline.core.database import get_db_session, billing_events, utcnow
from storyline.core.errors import BillingDisabledError, NotFoundError
from storyline.features.billing.cache import get_cached_subscription
from storyline.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookResult,
)
from storyline.features.billing.stripe_provider import StripeProvider
from storyline.features.billing.sync import sync_subscription
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.users.service import find_user_by_email, get_user
from storyline.models.subscription import SyncOutcome

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_PATH = "/settings?checkout=success"
DEFAULT_CANCEL_PATH = "/settings?checkout=cancelled"
PORTAL_RETURN_PATH = "/settings?portal_return=1"

# Events that can change whether a user holds an active subscription
SUBSCRIPTION_EVENTS = (
    "checkout.session.completed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
)


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider(
            secret_key=os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY,
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or settings.STRIPE_WEBHOOK_SECRET,
        )
    except BillingProviderError:
        logger.error("[billing] provider unavailable", exc_info=True)
        return None


def _require(provider: Optional[BillingProvider]) -> BillingProvider:
    if provider is None:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return provider


def _join(origin: str, path: str) -> str:
    return origin.rstrip("/") + "/" + path.lstrip("/")


def _customer_for(user_id: str, email: Optional[str], provider: BillingProvider) -> Optional[str]:
    """Customer id from the local cache, falling back to a lookup by email."""
    cached = get_cached_subscription(user_id)
    if cached and cached.stripe_customer_id:
        return cached.stripe_customer_id
    if not email:
        user = get_user(user_id)
        email = user.email if user else None
    if not email:
        return None
    return provider.find_customer_by_email(email)


def start_checkout(
    user_id: str,
    email: Optional[str],
    provider: Optional[BillingProvider],
    *,
    origin: Optional[str] = None,
    success_path: str = DEFAULT_SUCCESS_PATH,
    cancel_path: str = DEFAULT_CANCEL_PATH,
) -> str:
    """
    Start a premium subscription checkout.

    Reuses the customer found by email, otherwise lets Stripe create one from
    customer_email. Uses STRIPE_PRICE_ID when configured, else an inline
    monthly price of PREMIUM_UNIT_AMOUNT.

    Returns:
        Checkout URL

    Raises:
        BillingDisabledError: billing not configured
        BillingProviderError: provider failure
    """
    provider = _require(provider)
    base = origin or settings.FRONTEND_URL
    customer_id = _customer_for(user_id, email, provider)
    url = provider.create_checkout_session(
        customer_id=customer_id,
        customer_email=None if customer_id else email,
        success_url=_join(base, success_path),
        cancel_url=_join(base, cancel_path),
        price_id=settings.STRIPE_PRICE_ID,
        unit_amount=settings.PREMIUM_UNIT_AMOUNT,
        currency=settings.PREMIUM_CURRENCY,
        metadata={"user_id": user_id},
    )
    logger.info("[billing] checkout started", extra={"user_id": user_id, "existing_customer": bool(customer_id)})
    return url


def start_portal(
    user_id: str,
    email: Optional[str],
    provider: Optional[BillingProvider],
    *,
    origin: Optional[str] = None,
) -> str:
    """
    Start a billing portal session. The return URL carries portal_return=1 so
    the client fires a critical stripe_portal_return sync when it lands.

    Raises:
        BillingDisabledError: billing not configured
        NotFoundError: the user has never been a billing customer
    """
    provider = _require(provider)
    customer_id = _customer_for(user_id, email, provider)
    if not customer_id:
        raise NotFoundError("No billing customer found for this account")
    return provider.create_portal_session(
        customer_id=customer_id,
        return_url=_join(origin or settings.FRONTEND_URL, PORTAL_RETURN_PATH),
    )


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    duplicate: bool
    user_id: Optional[str] = None
    sync: Optional[SyncOutcome] = None


def _resolve_webhook_user(result: BillingWebhookResult) -> Optional[str]:
    user_id = result.metadata.get("user_id")
    if user_id and get_user(user_id):
        return user_id
    if result.customer_email:
        user = find_user_by_email(result.customer_email)
        if user:
            return user.user_id
    return None


def _record_event(result: BillingWebhookResult, payload_hash: str) -> bool:
    """Insert the event row. False when it was already recorded (duplicate delivery)."""
    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.id).where(billing_events.c.stripe_event_id == result.event_id)
        ).first()
    if existing:
        return False
    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=result.event_id,
                    event_type=result.event_type,
                    payload_hash=payload_hash,
                    processed=False,
                    received_at=utcnow(),
                )
            )
    except IntegrityError:
        # Race condition: another worker already inserted this event
        return False
    return True


def _mark_event(event_id: str, **values) -> None:
    with get_db_session() as session:
        session.execute(
            update(billing_events).where(billing_events.c.stripe_event_id == event_id).values(**values)
        )


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider],
    store: EntitlementStore,
) -> WebhookOutcome:
    """
    Process a billing webhook (idempotent).

    1. Verify signature and parse
    2. Skip if the event id was already recorded
    3. For subscription-affecting events, resolve the user and run a full
       sync; the payload itself is never trusted as entitlement state
    4. Mark processed, or store the error and re-raise

    Raises:
        BillingDisabledError: billing not configured
        BillingWebhookError: signature invalid or payload malformed
    """
    provider = _require(provider)
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    if not _record_event(result, payload_hash):
        logger.info("[billing] duplicate webhook skipped", extra={"event_id": result.event_id})
        return WebhookOutcome(event_id=result.event_id, event_type=result.event_type, duplicate=True)

    outcome = WebhookOutcome(event_id=result.event_id, event_type=result.event_type, duplicate=False)
    try:
        if result.event_type in SUBSCRIPTION_EVENTS:
            outcome.user_id = _resolve_webhook_user(result)
            if outcome.user_id:
                outcome.sync = sync_subscription(outcome.user_id, result.customer_email, provider, store)
            else:
                logger.warning(
                    "[billing] webhook for unknown user",
                    extra={"event_id": result.event_id, "customer_id": result.customer_id},
                )
        _mark_event(result.event_id, processed=True, processed_at=utcnow(), user_id=outcome.user_id)
    except Exception as e:
        _mark_event(result.event_id, error=str(e)[:2000])
        raise

    return outcome


def get_billing_status(user_id: str) -> Dict[str, object]:
    """Billing view of the local subscription cache (never the entitlement source)."""
    cached = get_cached_subscription(user_id)
    if cached is None:
        return {
            "enabled": billing_enabled(),
            "status": None,
            "period_end": None,
            "cancel_at_period_end": False,
            "updated_at": None,
        }
    return {
        "enabled": billing_enabled(),
        "status": cached.subscription_status,
        "period_end": cached.current_period_end,
        "cancel_at_period_end": cached.cancel_at_period_end,
        "updated_at": cached.updated_at,
    }
