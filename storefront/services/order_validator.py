"""
Normalizes raw order rows into OrderRecord.

Rows from the store are treated as untrusted: recoverable problems (status,
address, amounts) are repaired with safe defaults, only a missing id or
user_id is fatal.
"""
import json
import logging
import math
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import ValidationError
from sqlmodel import SQLModel

from storefront.constants.order_status import OrderStatus, is_valid_status
from storefront.errors import MalformedOrderError
from storefront.schemas.orders_schemas import OrderRecord, ShippingAddress
from storefront.utils.timestamps import as_utc

logger = logging.getLogger(__name__)


def _as_mapping(raw) -> Mapping[str, Any]:
    if isinstance(raw, OrderRecord):
        return raw.model_dump()
    if isinstance(raw, SQLModel):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return raw
    raise MalformedOrderError(f"expected a mapping, got {type(raw).__name__}")


def _required_text(data: Mapping[str, Any], field: str, order_id=None) -> str:
    value = data.get(field)
    if value is None or not str(value).strip():
        raise MalformedOrderError(f"missing {field}", order_id=order_id)
    return str(value)


def normalize_status(value, order_id=None) -> OrderStatus:
    if is_valid_status(value):
        return OrderStatus(value)
    logger.warning(f"Order {order_id} has unknown status {value!r}, defaulting to pending")
    return OrderStatus.pending


def normalize_address(value, order_id=None) -> ShippingAddress:
    if value is None:
        return ShippingAddress()
    if isinstance(value, ShippingAddress):
        return value.model_copy()
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise MalformedOrderError(f"unreadable shipping_address ({exc})", order_id=order_id) from exc
        if value is None:
            return ShippingAddress()
    if not isinstance(value, Mapping):
        raise MalformedOrderError("shipping_address is not an object", order_id=order_id)
    try:
        return ShippingAddress.model_validate(dict(value))
    except ValidationError as exc:
        raise MalformedOrderError(f"invalid shipping_address ({exc})", order_id=order_id) from exc


def coerce_amount(value, field: str = "amount", order_id=None) -> float:
    if value is None:
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Order {order_id} has non-numeric {field} {value!r}, using 0")
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        logger.warning(f"Order {order_id} has invalid {field} {value!r}, using 0")
        return 0.0
    return amount


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes")
    return bool(value)


def _coerce_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def validate_order(raw) -> OrderRecord:
    data = _as_mapping(raw)

    order_id = _required_text(data, "id")
    user_id = _required_text(data, "user_id", order_id=order_id)

    address = normalize_address(data.get("shipping_address"), order_id=order_id)
    shipping_cost = coerce_amount(data.get("shipping_cost"), "shipping_cost", order_id)
    total = coerce_amount(data.get("total"), "total", order_id)
    if data.get("subtotal") is None:
        subtotal = round(max(total - shipping_cost, 0.0), 2)
    else:
        subtotal = coerce_amount(data.get("subtotal"), "subtotal", order_id)

    customer_name = data.get("customer_name")
    if not customer_name:
        customer_name = "" if address.full_name == ShippingAddress().full_name else address.full_name

    payment_intent_id = data.get("payment_intent_id") or data.get("stripe_payment_intent_id")

    return OrderRecord(
        id=order_id,
        user_id=user_id,
        customer_name=str(customer_name),
        status=normalize_status(data.get("status"), order_id),
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total=total,
        shipping_address=address,
        payment_received=_coerce_bool(data.get("payment_received")),
        payment_intent_id=payment_intent_id,
        created_at=_coerce_datetime(data.get("created_at")),
        updated_at=_coerce_datetime(data.get("updated_at")),
    )
