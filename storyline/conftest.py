# storyline/conftest.py
import os

# Settings are read at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("ADMIN_API_KEY", None)

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from storyline.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    ProviderSubscription,
)


class FakeBillingProvider:
    """In-memory billing provider; records every call it receives."""

    def __init__(self):
        self.customers: Dict[str, str] = {}
        self.subscriptions: Dict[str, List[ProviderSubscription]] = {}
        self.calls: List[tuple] = []
        self.webhook_result: Optional[BillingWebhookResult] = None
        self.fail_lookups = False

    def add_customer(self, email: str, customer_id: str = "cus_test") -> str:
        self.customers[email] = customer_id
        return customer_id

    def add_subscription(
        self,
        email: str,
        *,
        customer_id: str = "cus_test",
        subscription_id: str = "sub_test",
        status: str = "active",
        period_end: Optional[datetime] = None,
        cancel_at_period_end: bool = False,
    ) -> ProviderSubscription:
        self.add_customer(email, customer_id)
        now = datetime.now(timezone.utc)
        subscription = ProviderSubscription(
            id=subscription_id,
            status=status,
            current_period_start=now - timedelta(days=1),
            current_period_end=period_end or now + timedelta(days=29),
            cancel_at_period_end=cancel_at_period_end,
        )
        self.subscriptions[customer_id] = [subscription]
        return subscription

    def cancel_all(self, customer_id: str = "cus_test") -> None:
        self.subscriptions[customer_id] = []

    def lookup_count(self) -> int:
        return sum(1 for call in self.calls if call[0] == "find_customer_by_email")

    def find_customer_by_email(self, email: str) -> Optional[str]:
        self.calls.append(("find_customer_by_email", email))
        if self.fail_lookups:
            raise BillingProviderError("Stripe is unreachable")
        return self.customers.get(email)

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[ProviderSubscription]:
        self.calls.append(("list_active_subscriptions", customer_id))
        return [s for s in self.subscriptions.get(customer_id, []) if s.status == "active"][:limit]

    def create_checkout_session(self, **kwargs) -> str:
        self.calls.append(("create_checkout_session", kwargs))
        return "https://checkout.stripe.test/session_123"

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self.calls.append(("create_portal_session", customer_id, return_url))
        return "https://billing.stripe.test/portal_123"

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        self.calls.append(("handle_webhook", body))
        if headers.get("stripe-signature") != "valid":
            raise BillingWebhookError("Invalid signature")
        if self.webhook_result is None:
            raise BillingWebhookError("Invalid payload")
        return self.webhook_result


@pytest.fixture(scope="function", autouse=True)
def database():
    """Fresh in-memory database for every test."""
    from storyline.core.database import create_all_tables, dispose_engine, init_engine

    init_engine("sqlite://")
    create_all_tables()
    yield
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    from storyline.core.metrics import METRICS

    METRICS.reset()
    yield


@pytest.fixture
def bus():
    from storyline.realtime.bus import TokenEventBus

    return TokenEventBus()


@pytest.fixture
def store(bus):
    from storyline.features.entitlements.store import EntitlementStore

    return EntitlementStore(bus=bus, initial_credit_balance=10)


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def user():
    """A mirrored user with an email on record."""
    from storyline.features.users.service import get_or_create_user

    return get_or_create_user("user_alice", "alice@example.com")


@pytest.fixture
def client(provider):
    """TestClient with the fake billing provider installed."""
    from fastapi.testclient import TestClient
    from storyline.main import app

    with TestClient(app) as test_client:
        app.state.provider_factory = lambda: provider
        yield test_client


@pytest.fixture
def auth_headers():
    return {"X-User-Id": "user_alice", "X-User-Email": "alice@example.com"}
