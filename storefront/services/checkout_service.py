import logging

from storefront.errors import EmptyOrderError
from storefront.schemas.checkout_schemas import CheckoutRequest, PlaceOrderResponse
from storefront.services.shipping import calculate_shipping_cost

logger = logging.getLogger(__name__)


def price_order(request: CheckoutRequest):
    """subtotal, shipping_cost, total for a checkout request."""
    subtotal = round(sum(item.price * item.quantity for item in request.items), 2)
    shipping_cost = round(calculate_shipping_cost(request.shipping_address.to_shipping_address()), 2)
    total = round(subtotal + shipping_cost, 2)
    return subtotal, shipping_cost, total


def place_order(store, actor, request: CheckoutRequest) -> PlaceOrderResponse:
    if not request.items:
        raise EmptyOrderError()

    subtotal, shipping_cost, total = price_order(request)

    order, items = store.create_order(
        user_id=actor.id,
        shipping_address=request.shipping_address.to_shipping_address(),
        items=request.items,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total=total,
    )
    logger.info(f"Order {order.id} placed by {actor.id}: {len(items)} item(s), total {total}")

    return PlaceOrderResponse(
        order=order,
        items=items,
        message="Order placed",
    )
