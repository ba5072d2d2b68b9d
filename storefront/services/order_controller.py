"""
Optimistic status updates over a local view of orders.

The controller is the only writer of its view. A status change is shown
immediately, written through the store, then either confirmed with the
returned record or rolled back to the last persisted record. Writes for the
same order are serialized and tagged with a generation number, so a response
belonging to a superseded request never overwrites fresher local state.
Realtime changes from the change feed are merged in with the same rule.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from storefront.constants.order_status import OrderStatus, ensure_valid_status, suggested_action
from storefront.errors import MalformedOrderError, NotFoundError
from storefront.realtime.change_feed import RowChange, Subscription
from storefront.schemas.orders_schemas import OrderRecord
from storefront.services.order_validator import validate_order

logger = logging.getLogger(__name__)

ViewListener = Callable[[OrderRecord], None]
NotifyListener = Callable[[OrderRecord, str], None]


def _is_older(candidate: Optional[datetime], reference: Optional[datetime]) -> bool:
    if candidate is None or reference is None:
        return False
    try:
        return candidate < reference
    except TypeError:
        # naive vs aware timestamps, cannot order them
        return False


def _visible_fields(record: OrderRecord) -> dict:
    return record.model_dump(exclude={"updated_at"})


class OrderViewController:
    def __init__(
        self,
        store,
        actor: str = "admin",
        on_view_change: Optional[ViewListener] = None,
        on_notify: Optional[NotifyListener] = None,
    ):
        self.store = store
        self.actor = actor
        self.on_view_change = on_view_change
        self.on_notify = on_notify

        self.view: Dict[str, OrderRecord] = {}
        self._confirmed: Dict[str, OrderRecord] = {}
        self._generation: Dict[str, int] = defaultdict(int)
        # order id -> [(generation, target status)] of writes not yet settled
        self._outstanding: Dict[str, List[Tuple[int, OrderStatus]]] = defaultdict(list)
        # statuses this controller has persisted, recognizes late echoes
        self._written: Dict[str, Set[OrderStatus]] = defaultdict(set)
        self._locks: Dict[str, asyncio.Lock] = {}

    # ---------- view ----------

    def load(self, records: Iterable) -> None:
        for raw in records:
            record = validate_order(raw)
            self.view[record.id] = record
            self._confirmed[record.id] = record

    def get(self, order_id: str) -> Optional[OrderRecord]:
        return self.view.get(order_id)

    def orders(self) -> List[OrderRecord]:
        return list(self.view.values())

    @property
    def in_flight(self) -> Set[str]:
        return {order_id for order_id, pending in self._outstanding.items() if pending}

    def suggested_action(self, order_id: str) -> Optional[OrderStatus]:
        record = self.view.get(order_id)
        if record is None:
            return None
        return suggested_action(record.status)

    def _show(self, record: OrderRecord) -> None:
        self.view[record.id] = record
        if self.on_view_change:
            self.on_view_change(record)

    def _remember(self, record: OrderRecord) -> None:
        """Track the newest persisted version, the rollback target."""
        known = self._confirmed.get(record.id)
        if known is not None and _is_older(record.updated_at, known.updated_at):
            return
        self._confirmed[record.id] = record

    def _is_latest(self, order_id: str, generation: int) -> bool:
        return self._generation[order_id] == generation

    def _settle(self, order_id: str, generation: int) -> None:
        self._outstanding[order_id] = [
            entry for entry in self._outstanding[order_id] if entry[0] != generation
        ]

    def _discard_optimistic(self, order_id: str) -> None:
        self._generation[order_id] += 1
        self._outstanding[order_id] = []

    # ---------- local writes ----------

    async def change_status(self, order_id: str, new_status) -> OrderRecord:
        status = ensure_valid_status(new_status)

        current = self.view.get(order_id)
        if current is None:
            raise NotFoundError(order_id)

        # last persisted state, not a previous optimistic guess
        snapshot = self._confirmed.get(order_id, current)

        self._generation[order_id] += 1
        generation = self._generation[order_id]
        self._outstanding[order_id].append((generation, status))
        self._show(current.model_copy(update={"status": status}))

        lock = self._locks.setdefault(order_id, asyncio.Lock())
        try:
            async with lock:
                raw = await self.store.update_status(order_id, status.value, actor=self.actor)
            record = validate_order(raw)
        except asyncio.CancelledError:
            self._rollback(order_id, generation, snapshot)
            raise
        except Exception as exc:
            logger.warning(f"Status change of order {order_id} to {status.value} failed: {exc}")
            self._rollback(order_id, generation, snapshot)
            raise

        self._remember(record)
        self._written[order_id].add(record.status)
        if self._is_latest(order_id, generation):
            self._settle(order_id, generation)
            self._show(record)
        else:
            self._settle(order_id, generation)
            logger.debug(f"Order {order_id} response for superseded request {generation} not shown")
        return record

    def _rollback(self, order_id: str, generation: int, snapshot: OrderRecord) -> None:
        self._settle(order_id, generation)
        if not self._is_latest(order_id, generation):
            # a newer request owns the view now
            return
        self._show(self._confirmed.get(order_id, snapshot))

    # ---------- realtime ----------

    def _is_echo(self, incoming: OrderRecord, current: OrderRecord, stamped: bool) -> bool:
        """True when the change repeats a write made here rather than someone else's."""
        order_id = incoming.id
        targets = {target for _, target in self._outstanding[order_id]}
        if incoming.status == current.status or incoming.status in targets:
            return True

        confirmed = self._confirmed.get(order_id)
        if stamped and confirmed is not None and incoming.updated_at and confirmed.updated_at:
            # only a strictly newer row version can carry a foreign write
            return not _is_older(confirmed.updated_at, incoming.updated_at)
        return incoming.status in self._written[order_id]

    def apply_remote_change(self, change) -> bool:
        """
        Merge a realtime row change into the view.

        Returns True when the user-facing "order updated" notification fired,
        which only happens for changes this controller did not initiate.
        """
        new_fields = change.new if isinstance(change, RowChange) else dict(change)
        order_id = new_fields.get("id")
        current = self.view.get(order_id) if order_id is not None else None
        if current is None:
            logger.debug(f"Ignoring change for order {order_id} outside the view")
            return False

        base = self._confirmed.get(order_id, current)
        incoming = validate_order({**base.model_dump(), **new_fields})

        if _is_older(incoming.updated_at, base.updated_at):
            logger.debug(f"Ignoring stale change for order {order_id}")
            return False

        if order_id in self.in_flight:
            echo = self._is_echo(incoming, current, stamped=new_fields.get("updated_at") is not None)
            self._remember(incoming)
            if echo:
                # keep the newest optimistic status over the persisted row
                confirmed = self._confirmed[order_id]
                self._show(confirmed.model_copy(update={"status": current.status}))
            else:
                logger.info(
                    f"Order {order_id} changed remotely to {incoming.status.value} "
                    f"while {current.status.value} was pending, dropping local guess"
                )
                self._discard_optimistic(order_id)
                self._show(incoming)
            return False

        self._remember(incoming)
        changed = _visible_fields(incoming) != _visible_fields(current)
        self._show(incoming)
        if not changed:
            return False

        if incoming.status != current.status:
            message = f"Order #{order_id[:8]} status changed to {incoming.status.value}"
        else:
            message = f"Order #{order_id[:8]} was updated"
        if self.on_notify:
            self.on_notify(incoming, message)
        return True

    async def run(self, subscription: Subscription) -> None:
        """Consume realtime changes until the subscription closes or the task is cancelled."""
        async for change in subscription:
            try:
                self.apply_remote_change(change)
            except MalformedOrderError as exc:
                logger.warning(f"Dropping malformed realtime change: {exc}")
