"""
Trigger-driven subscription reconciliation for connected clients.

Triggers:
- critical (app_initialization, stripe_portal_return, daily_expiration_check)
  always run a full sync
- non-critical (periodic_check, visibility_change, window_focus, manual)
  consult the local cache first and skip the provider when it is fresh

Every trigger is debounced per user: the timestamp is taken before any work
starts, so two triggers inside the window cost at most one provider round
trip. There is no mutual exclusion beyond that; overlapping syncs outside the
window race and the last cache upsert wins.

Blocking work (database, Stripe SDK) runs in worker threads so the event loop
never stalls.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional
import asyncio
import logging
import time

from storyline.core.config import settings
from storyline.core.errors import SubscriptionSyncError
from storyline.core.metrics import subscription_syncs_total, subscription_sync_skipped_total
from storyline.features.billing.cache import should_perform_full_sync
from storyline.features.billing.provider import BillingProvider
from storyline.features.billing.sync import sync_subscription
from storyline.features.entitlements.store import EntitlementStore
from storyline.models.subscription import SyncReason, TriggerResult

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], Optional[BillingProvider]]


class SubscriptionMonitor:
    def __init__(
        self,
        store: EntitlementStore,
        provider_factory: ProviderFactory,
        *,
        debounce_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.debounce_seconds = settings.SYNC_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.interval_seconds = settings.SYNC_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_check: Dict[str, float] = {}

    def _debounced(self, user_id: str) -> bool:
        """Check-and-stamp with no await in between."""
        now = self._clock()
        last = self._last_check.get(user_id)
        if last is not None and now - last < self.debounce_seconds:
            return True
        self._prune(now)
        self._last_check[user_id] = now
        return False

    def _prune(self, now: float) -> None:
        """Forget stamps that can no longer debounce anything."""
        expired = [uid for uid, stamp in self._last_check.items() if now - stamp >= self.debounce_seconds]
        for uid in expired:
            del self._last_check[uid]

    async def trigger(
        self,
        user_id: str,
        email: Optional[str],
        reason: SyncReason,
        *,
        surface_errors: bool = False,
    ) -> TriggerResult:
        if self._debounced(user_id):
            subscription_sync_skipped_total.inc(labels={"cause": "debounced"})
            return TriggerResult(reason=reason, performed=False, skipped_because="debounced")

        try:
            if not await asyncio.to_thread(should_perform_full_sync, user_id, reason):
                subscription_sync_skipped_total.inc(labels={"cause": "cache_fresh"})
                return TriggerResult(reason=reason, performed=False, skipped_because="cache_fresh")

            provider = self.provider_factory()
            if provider is None:
                subscription_sync_skipped_total.inc(labels={"cause": "billing_disabled"})
                return TriggerResult(reason=reason, performed=False, skipped_because="billing_disabled")

            outcome = await asyncio.to_thread(sync_subscription, user_id, email, provider, self.store)
        except Exception as e:
            subscription_syncs_total.inc(labels={"reason": reason.value, "outcome": "error"})
            logger.warning(
                "[subscription] sync failed",
                exc_info=True,
                extra={"user_id": user_id, "reason": reason.value},
            )
            if surface_errors:
                raise SubscriptionSyncError(
                    "Could not verify subscription status. Please try refreshing the page."
                ) from e
            return TriggerResult(reason=reason, performed=True, error=str(e))

        subscription_syncs_total.inc(labels={"reason": reason.value, "outcome": outcome.plan.value})
        return TriggerResult(reason=reason, performed=True, outcome=outcome)

    async def manual_sync(self, user_id: str, email: Optional[str]) -> TriggerResult:
        """User-initiated sync; failures raise SubscriptionSyncError."""
        return await self.trigger(user_id, email, SyncReason.MANUAL, surface_errors=True)

    async def _periodic(self, user_id: str, email: Optional[str]) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            await self.trigger(user_id, email, SyncReason.PERIODIC_CHECK)

    @asynccontextmanager
    async def watch(self, user_id: str, email: Optional[str]) -> AsyncIterator["SubscriptionMonitor"]:
        """Run the periodic check for the lifetime of a client session."""
        task = asyncio.create_task(self._periodic(user_id, email), name=f"subscription-watch:{user_id}")
        try:
            yield self
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
