"""
Live order views over WebSockets.

Each connection owns an OrderViewController fed by the change feed. Admin
sessions can also change statuses through it; every view change, "order
updated" notification and failed change is pushed back as a JSON frame.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from storefront.dependencies.stores import get_async_order_store
from storefront.errors import StorefrontError
from storefront.realtime import change_feed
from storefront.schemas.orders_schemas import OrderFilters
from storefront.services.order_controller import OrderViewController
from storefront.services.order_store import ORDERS_TABLE, AsyncOrderStore
from storefront.utils.token import actor_from_token

logger = logging.getLogger(__name__)

router = APIRouter()


def _order_frame(record):
    return {"type": "order", "order": record.model_dump(mode="json")}


def _error_frame(order_id, exc: StorefrontError):
    return {
        "type": "error",
        "order_id": order_id,
        "error": exc.code,
        "detail": str(exc),
        "retryable": exc.retryable,
    }


async def _pump(websocket: WebSocket, outbox: asyncio.Queue):
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


async def _change_status(controller: OrderViewController, outbox: asyncio.Queue, message: dict):
    order_id = message.get("order_id")
    try:
        await controller.change_status(order_id, message.get("status"))
    except StorefrontError as exc:
        # the view is already rolled back, tell the client why
        outbox.put_nowait(_error_frame(order_id, exc))


async def _serve(websocket: WebSocket, controller: OrderViewController, subscription, outbox, allow_changes: bool):
    listener = asyncio.create_task(controller.run(subscription), name="live-listener")
    sender = asyncio.create_task(_pump(websocket, outbox), name="live-sender")
    changes = set()
    try:
        while True:
            message = await websocket.receive_json()
            if allow_changes and message.get("action") == "change_status":
                task = asyncio.create_task(_change_status(controller, outbox, message))
                changes.add(task)
                task.add_done_callback(changes.discard)
            else:
                outbox.put_nowait({
                    "type": "error",
                    "error": "unsupported_action",
                    "detail": f"Unsupported action: {message.get('action')!r}",
                })
    except WebSocketDisconnect:
        logger.info("Live order session disconnected")
    finally:
        subscription.close()
        tasks = [listener, sender, *changes]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, WebSocketDisconnect):
                continue
            if isinstance(result, Exception):
                logger.error(f"Live order session task {task.get_name()} failed: {result!r}")


async def _open_session(websocket: WebSocket, actor, async_store: AsyncOrderStore, load, filters, allow_changes: bool):
    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()
    controller = OrderViewController(
        async_store,
        actor=actor.id,
        on_view_change=lambda record: outbox.put_nowait(_order_frame(record)),
        on_notify=lambda record, message: outbox.put_nowait(
            {"type": "notification", "order_id": record.id, "message": message}
        ),
    )
    # subscribe before loading so no change falls between the two
    subscription = change_feed.subscribe(ORDERS_TABLE, "UPDATE", filters=filters)

    try:
        orders, extra = await load()
    except StorefrontError as exc:
        subscription.close()
        await websocket.send_json(_error_frame(None, exc))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    controller.load(orders)
    await websocket.send_json({
        "type": "snapshot",
        "orders": [o.model_dump(mode="json") for o in controller.orders()],
        **extra,
    })
    await _serve(websocket, controller, subscription, outbox, allow_changes=allow_changes)


@router.websocket("/orders")
async def my_orders_live(
    websocket: WebSocket,
    token: str = Query(...),
    async_store: AsyncOrderStore = Depends(get_async_order_store),
):
    actor = actor_from_token(token)
    if actor is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def load():
        return await async_store.list_orders_for_user(actor.id), {}

    await _open_session(
        websocket, actor, async_store, load,
        filters={"user_id": actor.id},
        allow_changes=False,
    )


@router.websocket("/admin/orders")
async def admin_orders_live(
    websocket: WebSocket,
    token: str = Query(...),
    page: int = Query(1, ge=1),
    async_store: AsyncOrderStore = Depends(get_async_order_store),
):
    actor = actor_from_token(token)
    if actor is None or not actor.is_admin:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def load():
        orders_page = await async_store.list_all_orders(OrderFilters(page=page))
        return orders_page.results, {
            "total_items": orders_page.total_items,
            "total_pages": orders_page.total_pages,
            "current_page": orders_page.current_page,
        }

    await _open_session(
        websocket, actor, async_store, load,
        filters=None,
        allow_changes=True,
    )
