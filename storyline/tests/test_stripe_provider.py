"""
Stripe provider: request shapes and event parsing, with the SDK patched out.
"""
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from storyline.features.billing.provider import BillingProviderError, BillingWebhookError
from storyline.features.billing.stripe_provider import StripeProvider


class Sub(dict):
    """Dict with attribute access to id, like a StripeObject."""

    @property
    def id(self):
        return self["id"]


@pytest.fixture
def stripe_provider():
    return StripeProvider(secret_key="sk_test_123", webhook_secret="whsec_test")


def test_requires_secret_key(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)

    with pytest.raises(BillingProviderError):
        StripeProvider()


def test_find_customer_by_email(stripe_provider):
    with patch("stripe.Customer.list", return_value=SimpleNamespace(data=[SimpleNamespace(id="cus_1")])) as listing:
        assert stripe_provider.find_customer_by_email("alice@example.com") == "cus_1"

    listing.assert_called_once_with(email="alice@example.com", limit=1)


def test_no_customer(stripe_provider):
    with patch("stripe.Customer.list", return_value=SimpleNamespace(data=[])):
        assert stripe_provider.find_customer_by_email("ghost@example.com") is None


def test_lookup_error_is_wrapped(stripe_provider):
    with patch("stripe.Customer.list", side_effect=stripe.StripeError("network down")):
        with pytest.raises(BillingProviderError, match="network down"):
            stripe_provider.find_customer_by_email("alice@example.com")


def test_active_subscription_period_from_items(stripe_provider):
    subscription = {
        "id": "sub_1",
        "status": "active",
        "cancel_at_period_end": True,
        "items": {"data": [{"current_period_start": 1767225600, "current_period_end": 1769904000}]},
    }

    with patch("stripe.Subscription.list", return_value=SimpleNamespace(data=[Sub(subscription)])) as listing:
        [active] = stripe_provider.list_active_subscriptions("cus_1")

    listing.assert_called_once_with(customer="cus_1", status="active", limit=1)
    assert active.id == "sub_1"
    assert active.cancel_at_period_end is True
    assert active.current_period_end.isoformat() == "2026-02-01T00:00:00+00:00"


def test_checkout_with_inline_price(stripe_provider):
    with patch("stripe.checkout.Session.create", return_value=SimpleNamespace(url="https://checkout")) as create:
        url = stripe_provider.create_checkout_session(
            customer_id=None,
            customer_email="alice@example.com",
            success_url="https://app/ok",
            cancel_url="https://app/cancel",
            unit_amount=50,
            metadata={"user_id": "user_alice"},
        )

    assert url == "https://checkout"
    params = create.call_args.kwargs
    assert params["mode"] == "subscription"
    assert params["customer_email"] == "alice@example.com"
    assert "customer" not in params
    assert params["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}


def test_checkout_needs_a_price(stripe_provider):
    with pytest.raises(BillingProviderError):
        stripe_provider.create_checkout_session(
            customer_id="cus_1", customer_email=None, success_url="a", cancel_url="b", unit_amount=None,
        )


class TestWebhooks:
    def test_missing_signature(self, stripe_provider):
        with pytest.raises(BillingWebhookError, match="Missing stripe-signature"):
            stripe_provider.handle_webhook({}, b"{}")

    def test_bad_signature(self, stripe_provider):
        error = stripe.SignatureVerificationError("bad", "sig")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(BillingWebhookError, match="Invalid signature"):
                stripe_provider.handle_webhook({"stripe-signature": "sig"}, b"{}")

    def test_checkout_completed_event(self, stripe_provider):
        event = {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {
                "customer": "cus_1",
                "subscription": "sub_1",
                "customer_details": {"email": "alice@example.com"},
                "metadata": {"user_id": "user_alice"},
            }},
        }
        with patch("stripe.Webhook.construct_event", return_value=event):
            result = stripe_provider.handle_webhook({"stripe-signature": "sig"}, b"{}")

        assert result.event_id == "evt_1"
        assert result.customer_email == "alice@example.com"
        assert result.subscription_id == "sub_1"
        assert result.metadata == {"user_id": "user_alice"}

    def test_subscription_event_looks_up_customer_email(self, stripe_provider):
        event = {
            "id": "evt_2",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_1", "status": "canceled", "customer": "cus_1"}},
        }
        with patch("stripe.Webhook.construct_event", return_value=event), \
                patch("stripe.Customer.retrieve", return_value={"email": "alice@example.com"}):
            result = stripe_provider.handle_webhook({"stripe-signature": "sig"}, b"{}")

        assert result.status == "canceled"
        assert result.customer_email == "alice@example.com"
