"""
Broadcast channel - push-based fan-out to connected viewers.

Each subscriber owns a bounded delivery queue. publish() is fire-and-forget:
it never blocks on a slow subscriber. A subscriber whose queue is full is
dropped; it resynchronises fully on reconnect.
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastEvent:
    """One event as delivered to a viewer."""
    event: str               # 'timer' or 'roster'
    payload: Dict[str, Any]
    sequence: int = 0


class Subscription:
    """A viewer's end of the broadcast channel."""

    def __init__(self, subscriber_id: int, max_queue: int):
        self.subscriber_id = subscriber_id
        self._queue: "queue.Queue[BroadcastEvent]" = queue.Queue(maxsize=max_queue)
        self.closed = False

    def offer(self, event: BroadcastEvent) -> bool:
        """Enqueue without blocking. False if the queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[BroadcastEvent]:
        """Next event, or None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[BroadcastEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def pending(self) -> int:
        return self._queue.qsize()


class Broadcaster:
    """
    Publish/subscribe registry.

    Args:
        max_queue: Per-subscriber backlog before the subscriber is dropped
    """

    def __init__(self, max_queue: int = 256):
        self.max_queue = max_queue
        self._subscribers: Dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._sequence = itertools.count(1)
        self.stats = {
            'published': 0,
            'delivered': 0,
            'dropped_subscribers': 0,
        }

    def subscribe(self) -> Subscription:
        with self._lock:
            sub = Subscription(next(self._ids), self.max_queue)
            self._subscribers[sub.subscriber_id] = sub
        logger.debug(f"Viewer {sub.subscriber_id} subscribed ({self.subscriber_count} connected)")
        return sub

    def unsubscribe(self, sub: Subscription):
        sub.closed = True
        with self._lock:
            removed = self._subscribers.pop(sub.subscriber_id, None)
        if removed is not None:
            logger.debug(f"Viewer {sub.subscriber_id} unsubscribed")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        with self._lock:
            item = BroadcastEvent(event=event, payload=payload, sequence=next(self._sequence))
            subscribers = list(self._subscribers.values())
            self.stats['published'] += 1

        delivered = 0
        for sub in subscribers:
            if sub.offer(item):
                delivered += 1
            else:
                logger.warning(
                    f"Viewer {sub.subscriber_id} backlog full ({sub.pending()} events), dropping"
                )
                self.unsubscribe(sub)
                with self._lock:
                    self.stats['dropped_subscribers'] += 1

        with self._lock:
            self.stats['delivered'] += delivered
        return delivered

    def close_all(self):
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            sub.closed = True
