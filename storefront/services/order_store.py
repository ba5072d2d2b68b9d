"""
Order store / query layer.

OrderStore wraps one SQLModel session. Every backend failure surfaces as
QueryError; a write that finds its row but changes nothing is a
ConcurrencyError, never a silent success.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from storefront.config import settings
from storefront.constants.order_status import OrderStatus, ensure_valid_status
from storefront.errors import ConcurrencyError, NotFoundError, QueryError
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.realtime.change_feed import ChangeFeed, RowChange
from storefront.schemas.orders_schemas import (
    OrderFilters,
    OrderItemRecord,
    OrderPage,
    OrderRecord,
    ShippingAddress,
)
from storefront.services.order_event_service import OrderEventType, list_order_events, log_order_event
from storefront.services.order_validator import validate_order
from storefront.utils.pagination import paginate
from storefront.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"


def _update_order():
    # plain UPDATE without RETURNING so rowcount stays reliable; commit expires the session
    return update(Order).execution_options(synchronize_session=False)


class OrderStore:
    def __init__(
        self,
        session: Session,
        feed: Optional[ChangeFeed] = None,
        page_size: Optional[int] = None,
    ):
        self.session = session
        self.feed = feed
        self.page_size = page_size or settings.ORDER_PAGE_SIZE

    def _fail(self, operation: str, exc: Exception) -> QueryError:
        self.session.rollback()
        logger.error(f"Order store {operation} failed: {exc}")
        return QueryError(operation, str(exc))

    def _publish(self, record: OrderRecord, event: str = "UPDATE", old: Optional[dict] = None):
        if self.feed is None:
            return
        self.feed.publish(
            RowChange(table=ORDERS_TABLE, event=event, new=record.model_dump(mode="json"), old=old)
        )

    def _load(self, order_id: str) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(order_id)
        return order

    # ---------- reads ----------

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> OrderRecord:
        try:
            order = self._load(order_id)
        except SQLAlchemyError as exc:
            raise self._fail("get_order", exc) from exc

        # customers only ever see their own orders
        if user_id is not None and order.user_id != str(user_id):
            raise NotFoundError(order_id)

        return validate_order(order)

    def get_order_items(self, order_id: str) -> List[OrderItemRecord]:
        try:
            items = self.session.exec(
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.id)
            ).all()
        except SQLAlchemyError as exc:
            raise self._fail("get_order_items", exc) from exc
        return [OrderItemRecord.model_validate(item.model_dump()) for item in items]

    def list_orders_for_user(self, user_id: str) -> List[OrderRecord]:
        try:
            orders = self.session.exec(
                select(Order)
                .where(Order.user_id == str(user_id))
                .order_by(Order.created_at.desc(), Order.id.asc())
            ).all()
        except SQLAlchemyError as exc:
            raise self._fail("list_orders_for_user", exc) from exc
        return [validate_order(o) for o in orders]

    def list_all_orders(self, filters: Optional[OrderFilters] = None) -> OrderPage:
        filters = filters or OrderFilters()
        query = select(Order)

        if filters.status:
            status = ensure_valid_status(filters.status)
            query = query.where(Order.status == status.value)

        if filters.search and filters.search.strip():
            term = f"%{filters.search.strip()}%"
            query = query.where(
                or_(
                    Order.id.ilike(term),
                    Order.customer_name.ilike(term),
                )
            )

        # id breaks created_at ties so pages never overlap
        query = query.order_by(Order.created_at.desc(), Order.id.asc())

        try:
            page = paginate(
                session=self.session,
                query=query,
                page=filters.page,
                limit=self.page_size,
                transform=validate_order,
            )
        except SQLAlchemyError as exc:
            raise self._fail("list_all_orders", exc) from exc

        return OrderPage(**page)

    def list_events(self, order_id: str):
        try:
            self._load(order_id)
            return list_order_events(self.session, order_id)
        except SQLAlchemyError as exc:
            raise self._fail("list_events", exc) from exc

    # ---------- writes ----------

    def update_status(self, order_id: str, new_status, actor: str = "system") -> OrderRecord:
        """Admin status write. Any of the four statuses, no ordering check."""
        status = ensure_valid_status(new_status)

        try:
            previous = self._load(order_id).status
            now = utc_now()

            result = self.session.exec(
                _update_order()
                .where(Order.id == order_id)
                .values(status=status.value, updated_at=now)
            )
            if result.rowcount == 0:
                self.session.rollback()
                logger.error(f"Status update of order {order_id} affected no rows")
                raise ConcurrencyError(order_id)

            log_order_event(
                self.session,
                order_id=order_id,
                event_type=OrderEventType.STATUS_CHANGED,
                label=f"Status changed from {previous} to {status.value}",
                created_by=actor,
                meta={"from": previous, "to": status.value},
            )
            self.session.commit()

            updated = self._load(order_id)
        except SQLAlchemyError as exc:
            raise self._fail("update_status", exc) from exc

        record = validate_order(updated)
        logger.info(f"Order {order_id} status {previous} -> {record.status.value} by {actor}")
        self._publish(record, old={"status": previous})
        return record

    def record_payment_outcome(self, order_id: str, succeeded: bool) -> Tuple[OrderRecord, bool]:
        """
        Apply a payment result.

        Success sets payment_received and moves pending -> processing, never
        touching a later status. Failure clears payment_received and leaves
        status alone. Replaying the same outcome changes nothing.
        """
        try:
            order = self._load(order_id)
            previous_status = order.status
            now = utc_now()

            if succeeded:
                flag = self.session.exec(
                    _update_order()
                    .where(Order.id == order_id, Order.payment_received.is_(False))
                    .values(payment_received=True, updated_at=now)
                )
                advance = self.session.exec(
                    _update_order()
                    .where(Order.id == order_id, Order.status == OrderStatus.pending.value)
                    .values(status=OrderStatus.processing.value, updated_at=now)
                )
                changed = flag.rowcount > 0 or advance.rowcount > 0
            else:
                flag = self.session.exec(
                    _update_order()
                    .where(Order.id == order_id, Order.payment_received.is_(True))
                    .values(payment_received=False, updated_at=now)
                )
                changed = flag.rowcount > 0

            if changed:
                log_order_event(
                    self.session,
                    order_id=order_id,
                    event_type=(
                        OrderEventType.PAYMENT_SUCCEEDED if succeeded else OrderEventType.PAYMENT_FAILED
                    ),
                    label="Payment received" if succeeded else "Payment failed",
                    created_by="payment",
                )
                self.session.commit()
            else:
                self.session.rollback()

            updated = self._load(order_id)
        except SQLAlchemyError as exc:
            raise self._fail("record_payment_outcome", exc) from exc

        record = validate_order(updated)
        if changed:
            logger.info(
                f"Order {order_id} payment_received={record.payment_received}, "
                f"status {previous_status} -> {record.status.value}"
            )
            self._publish(record, old={"status": previous_status})
        return record, changed

    def attach_payment_intent(self, order_id: str, intent_id: str) -> OrderRecord:
        try:
            self._load(order_id)
            result = self.session.exec(
                _update_order()
                .where(Order.id == order_id)
                .values(payment_intent_id=intent_id, updated_at=utc_now())
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise ConcurrencyError(order_id)
            log_order_event(
                self.session,
                order_id=order_id,
                event_type=OrderEventType.PAYMENT_INTENT_CREATED,
                label="Payment started",
                created_by="payment",
                meta={"payment_intent_id": intent_id},
            )
            self.session.commit()
            updated = self._load(order_id)
        except SQLAlchemyError as exc:
            raise self._fail("attach_payment_intent", exc) from exc
        return validate_order(updated)

    def create_order(
        self,
        *,
        user_id: str,
        shipping_address: ShippingAddress,
        items: Iterable,
        subtotal: float,
        shipping_cost: float,
        total: float,
    ) -> Tuple[OrderRecord, List[OrderItemRecord]]:
        """Order and its items in one transaction."""
        try:
            order = Order(
                user_id=str(user_id),
                customer_name=shipping_address.full_name,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                total=total,
                status=OrderStatus.pending.value,
                payment_received=False,
                shipping_address=shipping_address.to_storage(),
            )
            self.session.add(order)
            self.session.flush()

            for item in items:
                self.session.add(
                    OrderItem(
                        order_id=order.id,
                        product_id=item.product_id,
                        product_name=item.product_name,
                        price=item.price,
                        quantity=item.quantity,
                    )
                )

            log_order_event(
                self.session,
                order_id=order.id,
                event_type=OrderEventType.ORDER_PLACED,
                label="Order placed",
                created_by=str(user_id),
                meta={"total": total, "shipping_cost": shipping_cost},
            )
            self.session.commit()
            self.session.refresh(order)
        except SQLAlchemyError as exc:
            raise self._fail("create_order", exc) from exc

        record = validate_order(order)
        self._publish(record, event="INSERT")
        return record, self.get_order_items(record.id)


# order id -> newest write task; a write starts only after the one before it has finished
_pending_writes: Dict[str, asyncio.Task] = {}


class AsyncOrderStore:
    """
    Awaitable facade over OrderStore.

    Each call opens its own session in a worker thread and is bounded by
    `timeout`; running out of time is a QueryError. A worker thread cannot
    be stopped, so a timed out write may still commit later. Writes to one
    order therefore run strictly one after another, whether or not their
    callers are still waiting.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        feed: Optional[ChangeFeed] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.timeout = timeout or settings.STORE_TIMEOUT_SECONDS

    def _work(self, operation: str, *args, **kwargs):
        def work():
            with self.session_factory() as session:
                store = OrderStore(session, feed=self.feed)
                return getattr(store, operation)(*args, **kwargs)

        return work

    def _timed_out(self, operation: str) -> QueryError:
        logger.error(f"Order store {operation} timed out after {self.timeout}s")
        return QueryError(operation, f"timed out after {self.timeout}s")

    async def _call(self, operation: str, *args, **kwargs):
        work = self._work(operation, *args, **kwargs)
        try:
            return await asyncio.wait_for(asyncio.to_thread(work), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise self._timed_out(operation) from exc

    async def _write(self, order_id: str, operation: str, *args, **kwargs):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        work = self._work(operation, order_id, *args, **kwargs)

        previous = _pending_writes.get(order_id)
        if previous is not None and previous.get_loop() is not loop:
            previous = None

        async def run_after_previous():
            if previous is not None:
                await asyncio.gather(previous, return_exceptions=True)
            if loop.time() >= deadline:
                # caller already gave up, never start the write
                raise QueryError(operation, "abandoned before it started")
            return await asyncio.to_thread(work)

        task = loop.create_task(run_after_previous())
        _pending_writes[order_id] = task

        def forget(done: asyncio.Task):
            if _pending_writes.get(order_id) is done:
                del _pending_writes[order_id]
            if not done.cancelled() and done.exception() is not None:
                logger.debug(f"Order store {operation} of order {order_id} ended with {done.exception()!r}")

        task.add_done_callback(forget)

        try:
            # the shield keeps the write queued for its successors after a timeout
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise self._timed_out(operation) from exc

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> OrderRecord:
        return await self._call("get_order", order_id, user_id=user_id)

    async def list_orders_for_user(self, user_id: str) -> List[OrderRecord]:
        return await self._call("list_orders_for_user", user_id)

    async def list_all_orders(self, filters: Optional[OrderFilters] = None) -> OrderPage:
        return await self._call("list_all_orders", filters)

    async def update_status(self, order_id: str, new_status, actor: str = "system") -> OrderRecord:
        # reject before handing anything to a worker thread
        ensure_valid_status(new_status)
        return await self._write(order_id, "update_status", new_status, actor=actor)

    async def record_payment_outcome(self, order_id: str, succeeded: bool) -> Tuple[OrderRecord, bool]:
        return await self._write(order_id, "record_payment_outcome", succeeded)
