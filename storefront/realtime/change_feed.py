"""
In-process row change feed.

Writers publish a RowChange after commit (possibly from a worker thread);
subscribers receive matching changes on their own event loop through an
asyncio.Queue, filtered by table, event type and column equality.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass
class RowChange:
    table: str
    event: str
    new: dict
    old: Optional[dict] = None

    @property
    def row_id(self) -> Optional[str]:
        value = self.new.get("id")
        return None if value is None else str(value)


@dataclass(eq=False)
class Subscription:
    feed: "ChangeFeed"
    table: str
    event: str
    filters: Dict[str, str]
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    closed: bool = False

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        if self.event != "*" and change.event != self.event:
            return False
        for column, expected in self.filters.items():
            if str(change.new.get(column)) != expected:
                return False
        return True

    def deliver(self, item) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, item)

    async def get(self) -> Optional[RowChange]:
        """Next change, or None once the subscription is closed."""
        item = await self.queue.get()
        if item is _CLOSED:
            self.closed = True
            return None
        return item

    def close(self) -> None:
        self.feed.unsubscribe(self)
        self.deliver(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> RowChange:
        change = await self.get()
        if change is None:
            raise StopAsyncIteration
        return change

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.close()


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, event: str = "UPDATE", filters: Optional[dict] = None) -> Subscription:
        """Must be called from the event loop that will consume the changes."""
        subscription = Subscription(
            feed=self,
            table=table,
            event=event,
            filters={column: str(value) for column, value in (filters or {}).items()},
            loop=asyncio.get_running_loop(),
        )
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {event} on {table} where {subscription.filters}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, change: RowChange) -> int:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]
        for subscription in targets:
            subscription.deliver(change)
        return len(targets)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


change_feed = ChangeFeed()
