from enum import Enum
from typing import Optional

from storefront.errors import InvalidStatusError


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"


# Linear lifecycle, no branches
ORDER_STATUS_SEQUENCE = (
    OrderStatus.pending,
    OrderStatus.processing,
    OrderStatus.shipped,
    OrderStatus.delivered,
)

STATUS_LABELS = {
    OrderStatus.pending: "Pending",
    OrderStatus.processing: "Processing",
    OrderStatus.shipped: "Shipped",
    OrderStatus.delivered: "Delivered",
}


def is_valid_status(value) -> bool:
    if isinstance(value, OrderStatus):
        return True
    if not isinstance(value, str):
        return False
    return value in OrderStatus.__members__


def ensure_valid_status(value) -> OrderStatus:
    if not is_valid_status(value):
        raise InvalidStatusError(value)
    return OrderStatus(value)


def next_status(current):
    """
    Next status in the lifecycle.

    Terminal and unrecognized values come back unchanged, so this never raises.
    """
    if not is_valid_status(current):
        return current
    index = ORDER_STATUS_SEQUENCE.index(OrderStatus(current))
    if index == len(ORDER_STATUS_SEQUENCE) - 1:
        return OrderStatus(current)
    return ORDER_STATUS_SEQUENCE[index + 1]


def suggested_action(current) -> Optional[OrderStatus]:
    """Status the admin UI offers as the one-click action, None when hidden."""
    upcoming = next_status(current)
    if upcoming == current:
        return None
    return upcoming
