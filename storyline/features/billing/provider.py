"""
Billing provider protocol.

Defines the interface the reconciliation and checkout flows need from a
billing provider (Stripe in production, fakes in tests).
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ProviderSubscription:
    """Provider-side subscription, reduced to what the local cache mirrors."""
    id: str
    status: str
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool = False


@dataclass
class BillingWebhookResult:
    """Result of verifying and parsing a billing webhook."""
    event_id: str
    event_type: str
    customer_id: Optional[str]
    customer_email: Optional[str]
    subscription_id: Optional[str]
    status: Optional[str]  # active, canceled, past_due, etc.
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer lookup by email
    - Listing active subscriptions for a customer
    - Checkout and portal session creation
    - Webhook signature verification and parsing
    """

    def find_customer_by_email(self, email: str) -> Optional[str]:
        """
        Look up a billing customer by email.

        Returns:
            Provider customer ID, or None when no customer exists

        Raises:
            BillingProviderError: If the lookup fails
        """
        ...

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[ProviderSubscription]:
        """
        List the customer's active subscriptions (newest first, at most `limit`).

        Raises:
            BillingProviderError: If the listing fails
        """
        ...

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
        """
        Create a subscription checkout session.

        Uses `price_id` when given, otherwise an inline monthly price of
        `unit_amount` (smallest currency unit). Passes `customer_email` when
        no customer exists yet.

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
