"""
Push channel for inserted rows.

The store publishes every committed insert into `feed`; subscribers receive
the rows whose columns match their filter. On the client side,
`NotificationInbox` keeps the received notifications and ignores duplicate
deliveries of the same id.
"""

import asyncio
import logging
import threading
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over inserted rows of one table matching a column filter."""

    def __init__(self, feed: "InsertFeed", table: str, filter: Dict[str, Any]):
        self.feed = feed
        self.table = table
        self.filter = dict(filter or {})
        self.closed = False
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()

    def matches(self, table: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        return all(row.get(k) == v for k, v in self.filter.items())

    def _deliver(self, row: Dict[str, Any]):
        if self.closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, row)
        except RuntimeError:
            # subscriber loop already gone
            logger.debug("dropping event for closed loop on %s", self.table)

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self):
        if not self.closed:
            self.closed = True
            self.feed._remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class InsertFeed:
    def __init__(self):
        self._subs: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, filter: Optional[Dict[str, Any]] = None) -> Subscription:
        """Must be called from a running event loop; events are delivered onto it."""
        sub = Subscription(self, table, filter or {})
        with self._lock:
            self._subs.append(sub)
        logger.debug("subscribed to %s %s", table, sub.filter)
        return sub

    def _remove(self, sub: Subscription):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)
        logger.debug("unsubscribed from %s %s", sub.table, sub.filter)

    def publish(self, table: str, row: Dict[str, Any]) -> int:
        with self._lock:
            targets = [s for s in self._subs if s.matches(table, row)]
        for s in targets:
            s._deliver(row)
        return len(targets)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)


feed = InsertFeed()


class NotificationInbox:
    """Client-side view of a user's notifications, append-only and deduplicated by id."""

    def __init__(self):
        self._items: Dict[int, Dict[str, Any]] = {}
        self._order: List[int] = []

    def add(self, event: Dict[str, Any]) -> bool:
        nid = event.get("id")
        if nid is None or nid in self._items:
            return False
        self._items[nid] = dict(event)
        self._order.insert(0, nid)  # newest first
        return True

    def mark_read(self, notification_id: int) -> bool:
        item = self._items.get(notification_id)
        if item is None or item.get("read"):
            return False
        item["read"] = True
        return True

    @property
    def unread_count(self) -> int:
        return sum(1 for i in self._items.values() if not i.get("read"))

    def items(self) -> List[Dict[str, Any]]:
        return [self._items[i] for i in self._order]
