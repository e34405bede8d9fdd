"""
Billing API routes.

- POST /api/billing/checkout: Create a premium checkout session
- POST /api/billing/portal: Create a customer portal session
- POST /api/billing/webhook: Handle Stripe webhooks
- GET  /api/billing/subscription: Local subscription cache view
"""
from typing import Optional
import asyncio

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from storyline.api.deps import get_billing_provider, get_store, request_origin
from storyline.core.auth import CurrentUser, get_current_user
from storyline.core.errors import UpstreamError, ValidationError
from storyline.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from storyline.features.billing.service import (
    DEFAULT_CANCEL_PATH,
    DEFAULT_SUCCESS_PATH,
    get_billing_status,
    process_webhook_event,
    start_checkout,
    start_portal,
)
from storyline.features.entitlements.store import EntitlementStore


router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    success_path: str = DEFAULT_SUCCESS_PATH
    cancel_path: str = DEFAULT_CANCEL_PATH


class UrlResponse(BaseModel):
    url: str


class BillingStatusResponse(BaseModel):
    enabled: bool
    status: Optional[str]
    period_end: Optional[str]  # ISO8601
    cancel_at_period_end: bool
    updated_at: Optional[str]


@router.post("/checkout", response_model=UrlResponse)
def create_checkout(
    request: Request,
    body: Optional[CheckoutRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        502: Stripe API error
    """
    body = body or CheckoutRequest()
    try:
        url = start_checkout(
            user.user_id,
            user.email,
            provider,
            origin=request_origin(request),
            success_path=body.success_path,
            cancel_path=body.cancel_path,
        )
    except BillingProviderError as e:
        raise UpstreamError(str(e))
    return UrlResponse(url=url)


@router.post("/portal", response_model=UrlResponse)
def create_portal(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Errors:
        503: Billing disabled
        404: Customer not found (user never checked out)
        502: Stripe API error
    """
    try:
        url = start_portal(user.user_id, user.email, provider, origin=request_origin(request))
    except BillingProviderError as e:
        raise UpstreamError(str(e))
    return UrlResponse(url=url)


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    store: EntitlementStore = Depends(get_store),
):
    """
    Verify, deduplicate and reconcile. Unauthenticated; the Stripe signature
    is the credential.

    Returns:
        {"received": true, "event_id": ..., "duplicate": bool}

    Errors:
        400: Invalid signature or payload
        503: Billing disabled
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)
    try:
        outcome = await asyncio.to_thread(process_webhook_event, headers, body, provider, store)
    except BillingWebhookError as e:
        raise ValidationError(str(e), code="invalid_webhook")
    except BillingProviderError as e:
        raise UpstreamError(str(e))
    return {"received": True, "event_id": outcome.event_id, "duplicate": outcome.duplicate}


@router.get("/subscription", response_model=BillingStatusResponse)
def get_subscription(user: CurrentUser = Depends(get_current_user)):
    status = get_billing_status(user.user_id)
    return BillingStatusResponse(
        enabled=status["enabled"],
        status=status["status"],
        period_end=status["period_end"].isoformat() if status["period_end"] else None,
        cancel_at_period_end=status["cancel_at_period_end"],
        updated_at=status["updated_at"].isoformat() if status["updated_at"] else None,
    )
