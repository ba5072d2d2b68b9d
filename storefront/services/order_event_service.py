from typing import List, Optional
from uuid import uuid4

from sqlmodel import Session, select

from storefront.models.order_event import OrderEvent
from storefront.utils.timestamps import utc_now


class OrderEventType:
    ORDER_PLACED = "order_placed"
    STATUS_CHANGED = "status_changed"
    PAYMENT_INTENT_CREATED = "payment_intent_created"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"


def log_order_event(
    session: Session,
    order_id: str,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
):
    """
    Append-only event log for order timeline.

    Added to the caller's session, committed with the write it describes.
    """

    event = OrderEvent(
        id=str(uuid4()),
        order_id=order_id,
        event_type=event_type,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=utc_now(),
    )

    session.add(event)
    return event


def list_order_events(session: Session, order_id: str) -> List[OrderEvent]:
    return session.exec(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.created_at.asc())
    ).all()
