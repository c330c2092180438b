from __future__ import annotations

"""
target_detect.core.bus
----------------------

Thread-safe in-process topic bus.

- publish() only enqueues; callbacks run on whichever thread calls spin_once()/spin().
- Each subscription has its own bounded queue (oldest message dropped when full,
  queue_size=0 means unbounded).
- Callback exceptions are logged and never reach the publisher or the spinning thread.
"""

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]


class Publisher:
    """Handle returned by FrameBus.advertise()."""

    def __init__(self, bus: "FrameBus", topic: str) -> None:
        self._bus = bus
        self.topic = topic
        self.num_published = 0
        self.closed = False

    def publish(self, msg: Any) -> None:
        if self.closed:
            raise RuntimeError(f"Publisher for '{self.topic}' has been shut down.")
        self._bus.publish(self.topic, msg)
        self.num_published += 1

    def shutdown(self) -> None:
        self._bus._remove_publisher(self)


class Subscription:
    """Handle returned by FrameBus.subscribe()."""

    def __init__(self, bus: "FrameBus", topic: str, callback: Callback, queue_size: int) -> None:
        self._bus = bus
        self.topic = topic
        self.callback = callback
        self.queue_size = int(queue_size)
        self.num_dropped = 0
        self._queue: Deque[Any] = deque()

    def shutdown(self) -> None:
        self._bus._remove_subscription(self)


class FrameBus:
    """Topic-based pub/sub with per-subscription queues."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._publishers: Dict[str, List[Publisher]] = {}
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._closed = False

    # --- channels ---
    def advertise(self, topic: str) -> Publisher:
        topic = _check_topic(topic)
        with self._cond:
            self._ensure_open()
            pub = Publisher(self, topic)
            self._publishers.setdefault(topic, []).append(pub)
        logger.debug("Advertised topic '%s'.", topic)
        return pub

    def subscribe(self, topic: str, callback: Callback, queue_size: int = 1) -> Subscription:
        topic = _check_topic(topic)
        if queue_size < 0:
            raise ValueError("queue_size must be >= 0")
        with self._cond:
            self._ensure_open()
            sub = Subscription(self, topic, callback, queue_size)
            self._subscriptions.setdefault(topic, []).append(sub)
        logger.debug("Subscribed to topic '%s' (queue_size=%d).", topic, queue_size)
        return sub

    def advertised_topics(self) -> List[str]:
        with self._cond:
            return sorted(t for t, pubs in self._publishers.items() if pubs)

    def subscribed_topics(self) -> List[str]:
        with self._cond:
            return sorted(t for t, subs in self._subscriptions.items() if subs)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- delivery ---
    def publish(self, topic: str, msg: Any) -> None:
        with self._cond:
            self._ensure_open()
            for sub in self._subscriptions.get(topic, ()):
                if sub.queue_size and len(sub._queue) >= sub.queue_size:
                    sub._queue.popleft()
                    sub.num_dropped += 1
                    logger.debug("Queue full on '%s'; dropping oldest message.", topic)
                sub._queue.append(msg)
            self._cond.notify_all()

    def pending(self) -> int:
        with self._cond:
            return sum(len(s._queue) for subs in self._subscriptions.values() for s in subs)

    def spin_once(self, timeout: Optional[float] = 0.0) -> int:
        """Dispatch every message queued so far. Waits up to `timeout` if nothing is queued.

        Returns the number of callbacks invoked.
        """
        with self._cond:
            if not self._has_pending() and not self._closed and timeout != 0.0:
                self._cond.wait(timeout=timeout)
            batch = []
            for subs in self._subscriptions.values():
                for sub in subs:
                    while sub._queue:
                        batch.append((sub, sub._queue.popleft()))

        for sub, msg in batch:
            try:
                sub.callback(msg)
            except Exception:
                logger.exception("Callback for topic '%s' raised; message discarded.", sub.topic)
        return len(batch)

    def spin(self, stop_event: Optional[threading.Event] = None, poll_interval: float = 0.1) -> None:
        """Dispatch messages until `stop_event` is set or the bus is shut down."""
        while not self._closed and not (stop_event is not None and stop_event.is_set()):
            self.spin_once(timeout=poll_interval)

    def notify(self) -> None:
        """Wake any thread blocked in spin_once()."""
        with self._cond:
            self._cond.notify_all()

    def shutdown(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            for pubs in self._publishers.values():
                for pub in pubs:
                    pub.closed = True
            self._publishers.clear()
            self._subscriptions.clear()
            self._cond.notify_all()
        logger.debug("Bus shut down.")

    # --- internals ---
    def _has_pending(self) -> bool:
        return any(s._queue for subs in self._subscriptions.values() for s in subs)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Bus has been shut down.")

    def _remove_publisher(self, pub: Publisher) -> None:
        with self._cond:
            pub.closed = True
            pubs = self._publishers.get(pub.topic, [])
            if pub in pubs:
                pubs.remove(pub)

    def _remove_subscription(self, sub: Subscription) -> None:
        with self._cond:
            subs = self._subscriptions.get(sub.topic, [])
            if sub in subs:
                subs.remove(sub)
            sub._queue.clear()


def _check_topic(topic: str) -> str:
    t = (topic or "").strip()
    if not t:
        raise ValueError("Topic name must be non-empty.")
    return t


__all__ = [
    "Publisher",
    "Subscription",
    "FrameBus",
]
