import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from starlette.concurrency import run_in_threadpool

from storefront.dependencies.stores import get_async_order_store, get_order_store
from storefront.schemas.payment_schemas import (
    PaymentConfirmation,
    PaymentIntentCreate,
    PaymentIntentResponse,
)
from storefront.services.order_store import AsyncOrderStore, OrderStore
from storefront.services.payment_service import (
    construct_webhook_event,
    create_payment_intent,
    handle_webhook_event,
    reconcile_redirect,
)
from storefront.utils.disconnect import ClientDisconnected, run_until_disconnect
from storefront.utils.token import CurrentActor, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

# nginx convention, the client closed the connection first
CLIENT_CLOSED_REQUEST = 499


@router.post("/intents", response_model=PaymentIntentResponse)
def create_intent(
    data: PaymentIntentCreate,
    store: OrderStore = Depends(get_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    order = store.get_order(data.order_id, user_id=current_user.id)
    return create_payment_intent(store, order, current_user)


# Return URL after the provider redirect; polls while the intent is still processing.
# Starlette does not cancel a handler when its client leaves, the polling watches the connection.
@router.get("/confirm", response_model=PaymentConfirmation)
async def confirm_payment(
    request: Request,
    order_id: str,
    payment_intent_client_secret: str,
    async_store: AsyncOrderStore = Depends(get_async_order_store),
    current_user: CurrentActor = Depends(get_current_user),
):
    try:
        return await run_until_disconnect(
            request,
            reconcile_redirect(
                async_store,
                order_id,
                payment_intent_client_secret,
                user_id=current_user.id,
            ),
        )
    except ClientDisconnected:
        logger.info(f"Payment confirmation of order {order_id} abandoned by the client")
        return Response(status_code=CLIENT_CLOSED_REQUEST)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    store: OrderStore = Depends(get_order_store),
):
    payload = await request.body()
    event = construct_webhook_event(payload, stripe_signature)
    return await run_in_threadpool(handle_webhook_event, store, event)
