from fastapi import APIRouter, Depends, status

from storefront.dependencies.stores import get_order_store
from storefront.schemas.checkout_schemas import CheckoutRequest, PlaceOrderResponse
from storefront.services.checkout_service import place_order, price_order
from storefront.services.order_store import OrderStore
from storefront.utils.token import CurrentActor, get_current_user

router = APIRouter()


@router.post("/summary")
def checkout_summary(
    data: CheckoutRequest,
    current_user: CurrentActor = Depends(get_current_user),
):
    subtotal, shipping_cost, total = price_order(data)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "total": total,
        "items": len(data.items),
    }


@router.post("/orders", response_model=PlaceOrderResponse, status_code=status.HTTP_201_CREATED)
def confirm_order(
    data: CheckoutRequest,
    store: OrderStore = Depends(get_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    return place_order(store, current_user, data)
