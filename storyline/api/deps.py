"""
FastAPI dependencies for the per-application services.

The bus, store and monitor are created once in the lifespan and live on
app.state; routes and websockets reach them through these helpers.
"""
from typing import Optional

from fastapi import Request
from starlette.requests import HTTPConnection

from storyline.features.billing.monitor import SubscriptionMonitor
from storyline.features.billing.provider import BillingProvider
from storyline.features.entitlements.store import EntitlementStore
from storyline.realtime.bus import TokenEventBus


def get_bus(conn: HTTPConnection) -> TokenEventBus:
    return conn.app.state.bus


def get_store(conn: HTTPConnection) -> EntitlementStore:
    return conn.app.state.store


def get_monitor(conn: HTTPConnection) -> SubscriptionMonitor:
    return conn.app.state.monitor


def get_billing_provider(request: Request) -> Optional[BillingProvider]:
    """None when billing is not configured."""
    return request.app.state.provider_factory()


def request_origin(request: Request) -> Optional[str]:
    """Browser origin used to build checkout/portal return URLs."""
    return request.headers.get("origin")
