"""
storyline/realtime/bus.py
Publish/subscribe service for entitlement and credit changes.

One instance per application, created in the lifespan and handed to the
entitlement store and websocket handlers through dependencies. The whole
contract is subscribe(callback) -> unsubscribe and publish(change).
Subscribers must treat a change as "re-read the store", never as data.
"""

from typing import Callable, Dict
import itertools
import logging
import threading

from storyline.models.entitlement import PlanChange

logger = logging.getLogger(__name__)

Subscriber = Callable[[PlanChange], None]
Unsubscribe = Callable[[], None]


class TokenEventBus:
    """
    Synchronous fan-out bus.

    publish may be called from worker threads (store writes run off the event
    loop), so callbacks must be thread-safe; async consumers hop back onto
    their loop with call_soon_threadsafe.
    """

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, change: PlanChange) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                # One broken listener must not starve the others
                logger.exception("[bus] subscriber failed", extra={"user_id": change.user_id})

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
