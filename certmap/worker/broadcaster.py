"""
Per-document status publish/subscribe.

Subscribers live on an event loop; publish may be called from any thread.
Deliveries are scheduled onto the subscriber's loop, so a subscriber that is
slow, full or gone is dropped without affecting the others.
"""

import asyncio
import threading
from collections import defaultdict
from typing import Any, Optional

import structlog

from certmap.config import settings
from certmap.observability import metrics

logger = structlog.get_logger(__name__)

_CLOSED = object()


class Subscription:
    """Async iterator of status events for one document."""

    def __init__(
        self,
        broadcaster: "StatusBroadcaster",
        doc_id: str,
        loop: asyncio.AbstractEventLoop,
        buffer_size: int,
    ):
        self.broadcaster = broadcaster
        self.doc_id = doc_id
        self.loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self.closed = False

    def _deliver(self, event: Any) -> None:
        # Runs on self.loop
        if self.closed and event is not _CLOSED:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("subscriber_overflow", doc_id=self.doc_id)
            self.broadcaster.unsubscribe(self)
            self._end()

    def _end(self) -> None:
        # Make room for the end marker so a waiting reader always wakes up
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def prime(self, event: dict) -> None:
        """Deliver an event directly. Must be called on the subscriber's loop."""
        self._deliver(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next event, or None once the subscription has ended."""
        event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if event is _CLOSED:
            self.closed = True
            return None
        return event

    def close(self) -> None:
        self.broadcaster.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> dict:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class StatusBroadcaster:
    """
    Registry of live subscribers keyed by document id.

    Owned by the application; close() ends every open subscription.
    """

    def __init__(self, buffer_size: Optional[int] = None):
        self.buffer_size = buffer_size or settings.SUBSCRIBER_BUFFER_SIZE
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, doc_id: str, initial_status: Optional[dict] = None) -> Subscription:
        """
        Attach a subscriber. Must be called from a running event loop.
        The current status, when given, is the first event delivered.
        """
        subscription = Subscription(
            self, doc_id, asyncio.get_running_loop(), self.buffer_size
        )
        if initial_status is not None:
            subscription.prime(initial_status)
        with self._lock:
            self._subscribers[doc_id].append(subscription)
        metrics.status_subscribers.inc()
        logger.debug("subscriber_attached", doc_id=doc_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.doc_id)
            if not subscribers or subscription not in subscribers:
                return
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.doc_id]
        subscription.closed = True
        metrics.status_subscribers.dec()
        logger.debug("subscriber_detached", doc_id=subscription.doc_id)

    def publish(self, doc_id: str, event: dict) -> int:
        """
        Fan an event out to the document's subscribers.
        Returns the number of deliveries scheduled.
        """
        with self._lock:
            targets = list(self._subscribers.get(doc_id, ()))

        delivered = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(subscription._deliver, event)
                delivered += 1
            except RuntimeError:
                # Subscriber's loop is closed
                logger.warning("subscriber_dropped", doc_id=doc_id)
                self.unsubscribe(subscription)
        return delivered

    def subscriber_count(self, doc_id: Optional[str] = None) -> int:
        with self._lock:
            if doc_id is not None:
                return len(self._subscribers.get(doc_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def close(self) -> None:
        with self._lock:
            subscriptions = [s for subs in self._subscribers.values() for s in subs]
        for subscription in subscriptions:
            self.unsubscribe(subscription)
            try:
                subscription.loop.call_soon_threadsafe(subscription._end)
            except RuntimeError:
                continue
