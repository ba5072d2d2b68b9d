# -------- ADMIN ORDERS --------
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from storefront.constants.order_status import next_status, suggested_action
from storefront.dependencies.admin import require_admin
from storefront.dependencies.stores import get_order_store
from storefront.schemas.orders_schemas import (
    OrderDetail,
    OrderEventRead,
    OrderFilters,
    OrderPage,
    OrderRecord,
    StatusUpdate,
)
from storefront.services.order_store import OrderStore
from storefront.utils.token import CurrentActor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    search: Optional[str] = None,
    status: Optional[str] = None,
    store: OrderStore = Depends(get_order_store),
    _: CurrentActor = Depends(require_admin),
):
    return store.list_all_orders(OrderFilters(status=status, search=search, page=page))


@router.get("/{order_id}", response_model=OrderDetail)
def order_details(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
    _: CurrentActor = Depends(require_admin),
):
    order = store.get_order(order_id)
    return OrderDetail(
        order=order,
        items=store.get_order_items(order_id),
        suggested_action=suggested_action(order.status),
    )


@router.get("/{order_id}/timeline", response_model=List[OrderEventRead])
def order_timeline(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
    _: CurrentActor = Depends(require_admin),
):
    return store.list_events(order_id)


@router.patch("/{order_id}/status", response_model=OrderRecord)
def update_order_status(
    order_id: str,
    data: StatusUpdate,
    store: OrderStore = Depends(get_order_store),
    admin: CurrentActor = Depends(require_admin),
):
    # admins may jump to any status, no ordering check
    return store.update_status(order_id, data.status, actor=admin.id)


@router.post("/{order_id}/advance", response_model=OrderRecord)
def advance_order_status(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
    admin: CurrentActor = Depends(require_admin),
):
    order = store.get_order(order_id)
    upcoming = next_status(order.status)
    if upcoming == order.status:
        logger.info(f"Order {order_id} already {order.status.value}, nothing to advance")
        return order
    return store.update_status(order_id, upcoming, actor=admin.id)
