from typing import List

from fastapi import APIRouter, Depends

from storefront.dependencies.stores import get_order_store
from storefront.schemas.orders_schemas import OrderDetail, OrderEventRead, OrderRecord
from storefront.services.order_store import OrderStore
from storefront.utils.token import CurrentActor, get_current_user

router = APIRouter()


# Order history, newest first

@router.get("", response_model=List[OrderRecord])
def list_my_orders(
    store: OrderStore = Depends(get_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    return store.list_orders_for_user(current_user.id)


@router.get("/{order_id}", response_model=OrderDetail)
def order_detail(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    order = store.get_order(order_id, user_id=current_user.id)
    return OrderDetail(order=order, items=store.get_order_items(order_id))


@router.get("/{order_id}/timeline", response_model=List[OrderEventRead])
def order_timeline(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    store.get_order(order_id, user_id=current_user.id)
    return store.list_events(order_id)
