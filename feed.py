"""
OrderFeed: push notifications for changes to a single order.

A view registers interest in an order id and receives every later
snapshot of that order until it closes its subscription. Publishers are
the request handlers that write to the order (status transitions and
delivery location updates), which run on worker threads, so all state is
guarded by a lock and waiting uses a Condition.
"""

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Iterator, List, Optional

import structlog

logger = structlog.get_logger()


class Subscription:
    def __init__(self, feed: "OrderFeed", order_id: str, max_pending: int = 100) -> None:
        self.order_id = order_id
        self._feed = feed
        self._pending: Deque[Dict[str, Any]] = deque(maxlen=max_pending)
        self._lock = threading.Lock()
        self._ready = threading.Condition(self._lock)
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def push(self, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            if self._closed:
                return
            # Oldest snapshots are dropped when a slow reader falls behind.
            self._pending.append(snapshot)
            self._ready.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next snapshot, or None on timeout or once closed."""
        with self._lock:
            end_time = None if timeout is None else time.monotonic() + max(0.0, timeout)
            while not self._pending and not self._closed:
                if end_time is None:
                    self._ready.wait()
                else:
                    remaining = end_time - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._ready.wait(remaining)
            if self._pending:
                return self._pending.popleft()
            return None

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._pending.clear()
            self._ready.notify_all()
        self._feed._remove(self)

    def __iter__(self) -> Iterator[Optional[Dict[str, Any]]]:
        """Yield snapshots as they arrive; None marks an idle poll interval."""
        while not self.closed:
            yield self.get(timeout=self._feed.poll_interval)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class OrderFeed:
    def __init__(self, poll_interval: float = 15.0) -> None:
        self.poll_interval = poll_interval
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.RLock()

    def subscribe(self, order_id: str) -> Subscription:
        sub = Subscription(self, order_id)
        with self._lock:
            self._subscribers.setdefault(order_id, []).append(sub)
        logger.debug("order_feed_subscribed", order_id=order_id)
        return sub

    def publish(self, order_id: str, snapshot: Dict[str, Any]) -> int:
        """Deliver a snapshot to every open subscription; returns how many got it."""
        with self._lock:
            subs = list(self._subscribers.get(order_id, ()))
        for sub in subs:
            sub.push(snapshot)
        return len(subs)

    def subscriber_count(self, order_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(order_id, ()))

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.order_id)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subscribers[sub.order_id]
        logger.debug("order_feed_unsubscribed", order_id=sub.order_id)
