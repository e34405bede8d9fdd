"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import logging
import os
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import stripe

from storyline.core.metrics import billing_provider_calls_total
from storyline.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    ProviderSubscription,
)

logger = logging.getLogger(__name__)

PREMIUM_PRODUCT_NAME = "Premium Plan"


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period_bounds(subscription: Any) -> tuple:
    """Billing period of a subscription.

    Newer API versions moved current_period_* from the subscription onto its
    items, so fall back to the first item.
    """
    start = _field(subscription, "current_period_start")
    end = _field(subscription, "current_period_end")
    if start is None or end is None:
        items = _field(_field(subscription, "items"), "data") or []
        if items:
            start = start if start is not None else _field(items[0], "current_period_start")
            end = end if end is not None else _field(items[0], "current_period_end")
    return _timestamp(start), _timestamp(end)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY env var)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET env var)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def find_customer_by_email(self, email: str) -> Optional[str]:
        billing_provider_calls_total.inc(labels={"call": "customers.list"})
        try:
            customers = stripe.Customer.list(email=email, limit=1)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer lookup failed: {e}")
        if not customers.data:
            return None
        return customers.data[0].id

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[ProviderSubscription]:
        billing_provider_calls_total.inc(labels={"call": "subscriptions.list"})
        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="active", limit=limit)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription listing failed: {e}")

        result = []
        for sub in subscriptions.data:
            period_start, period_end = _period_bounds(sub)
            result.append(ProviderSubscription(
                id=sub.id,
                status=_field(sub, "status", "active"),
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=bool(_field(sub, "cancel_at_period_end", False)),
            ))
        return result

    def create_checkout_session(
        self,
        *,
        customer_id: Optional[str],
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
        price_id: Optional[str] = None,
        unit_amount: Optional[int] = None,
        currency: str = "usd",
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Create Stripe checkout session."""
        if price_id:
            line_item: Dict[str, Any] = {"price": price_id, "quantity": 1}
        elif unit_amount:
            line_item = {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": PREMIUM_PRODUCT_NAME},
                    "unit_amount": unit_amount,
                    "recurring": {"interval": "month"},
                },
                "quantity": 1,
            }
        else:
            raise BillingProviderError("Either price_id or unit_amount is required")

        params: Dict[str, Any] = {
            "line_items": [line_item],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        billing_provider_calls_total.inc(labels={"call": "checkout.sessions.create"})
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        billing_provider_calls_total.inc(labels={"call": "billing_portal.sessions.create"})
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")
        return session.url

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Any) -> BillingWebhookResult:
        """Parse Stripe event into normalized BillingWebhookResult."""
        event_type = _field(event, "type")
        data = _field(_field(event, "data"), "object") or {}

        customer_id = _field(data, "customer")
        customer_email = None
        subscription_id = None
        status = None

        if event_type.startswith("customer.subscription."):
            subscription_id = _field(data, "id")
            status = _field(data, "status")
        elif event_type == "checkout.session.completed":
            subscription_id = _field(data, "subscription")
            customer_email = _field(data, "customer_email") or _field(_field(data, "customer_details"), "email")

        if customer_id and not customer_email:
            customer_email = self._customer_email(customer_id)

        return BillingWebhookResult(
            event_id=_field(event, "id"),
            event_type=event_type,
            customer_id=customer_id,
            customer_email=customer_email,
            subscription_id=subscription_id,
            status=status,
            metadata=dict(_field(data, "metadata") or {}),
        )

    def _customer_email(self, customer_id: str) -> Optional[str]:
        billing_provider_calls_total.inc(labels={"call": "customers.retrieve"})
        try:
            customer = stripe.Customer.retrieve(customer_id)
        except stripe.StripeError as e:
            logger.warning("[billing] customer lookup for webhook failed", extra={"customer_id": customer_id, "error": str(e)})
            return None
        return _field(customer, "email")
