"""API tests through the FastAPI app."""

import asyncio
import hashlib
import hmac
import json
import logging
import time

import pytest
from starlette.websockets import WebSocketDisconnect

from storefront.config import settings

CHECKOUT = {
    "items": [
        {"product_id": "book-1", "product_name": "Dune", "quantity": 1, "price": 49.99},
        {"product_id": "book-2", "product_name": "Emma", "quantity": 2, "price": 17.50},
    ],
    "shipping_address": {
        "full_name": "Ann Smith",
        "street": "1 Main St",
        "city": "Yerevan",
        "zip": "0010",
    },
}


def signed_webhook(payload: dict):
    """Body and Stripe-Signature header signed with the configured webhook secret."""
    body = json.dumps(payload)
    timestamp = int(time.time())
    signature = hmac.new(
        settings.STRIPE_WEBHOOK_SECRET.encode(),
        f"{timestamp}.{body}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return body, f"t={timestamp},v1={signature}"


def test_health(client):
    response = client.get("/health/check")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"


class TestCheckout:
    def test_requires_login(self, client):
        assert client.post("/checkout/orders", json=CHECKOUT).status_code == 401

    def test_summary(self, client, customer_headers):
        response = client.post("/checkout/summary", json=CHECKOUT, headers=customer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["subtotal"] == pytest.approx(84.99)
        assert body["shipping_cost"] == pytest.approx(5.0)
        assert body["total"] == pytest.approx(89.99)

    def test_place_order(self, client, customer_headers):
        response = client.post("/checkout/orders", json=CHECKOUT, headers=customer_headers)

        assert response.status_code == 201
        order = response.json()["order"]
        assert order["status"] == "pending"
        assert order["payment_received"] is False
        assert order["total"] == pytest.approx(89.99)
        assert order["shipping_address"]["zipCode"] == "0010"
        assert len(response.json()["items"]) == 2

    def test_empty_cart(self, client, customer_headers):
        response = client.post(
            "/checkout/orders",
            json={**CHECKOUT, "items": []},
            headers=customer_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "empty_order"

    def test_bad_quantity(self, client, customer_headers):
        bad = {**CHECKOUT, "items": [{"product_id": "book-1", "quantity": 0, "price": 1}]}

        assert client.post("/checkout/orders", json=bad, headers=customer_headers).status_code == 422


class TestCustomerOrders:
    def test_history_is_scoped_to_owner(self, client, customer_headers, make_order):
        mine = make_order(user_id="user-1")
        make_order(user_id="user-2")

        response = client.get("/orders", headers=customer_headers)

        assert [o["id"] for o in response.json()] == [mine.id]

    def test_other_users_order_is_not_found(self, client, customer_headers, make_order):
        theirs = make_order(user_id="user-2")

        response = client.get(f"/orders/{theirs.id}", headers=customer_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_detail_and_timeline(self, client, customer_headers):
        placed = client.post("/checkout/orders", json=CHECKOUT, headers=customer_headers).json()
        order_id = placed["order"]["id"]

        detail = client.get(f"/orders/{order_id}", headers=customer_headers).json()
        timeline = client.get(f"/orders/{order_id}/timeline", headers=customer_headers).json()

        assert [i["product_id"] for i in detail["items"]] == ["book-1", "book-2"]
        assert [e["event_type"] for e in timeline] == ["order_placed"]


class TestAdminOrders:
    def test_customers_are_refused(self, client, customer_headers):
        assert client.get("/admin/orders", headers=customer_headers).status_code == 403

    def test_user_metadata_role_is_not_trusted(self, client, token_for):
        token = token_for("user-9", user_metadata={"role": "admin"})

        response = client.get("/admin/orders", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_list_and_search(self, client, admin_headers, make_order):
        make_order(customer_name="Ann Smith")
        bob = make_order(customer_name="Bob Jones")

        everything = client.get("/admin/orders", headers=admin_headers).json()
        found = client.get("/admin/orders", params={"search": "bob"}, headers=admin_headers).json()

        assert everything["total_items"] == 2
        assert [o["id"] for o in found["results"]] == [bob.id]

    def test_detail_offers_next_status(self, client, admin_headers, make_order):
        pending = make_order()
        delivered = make_order(status="delivered")

        first = client.get(f"/admin/orders/{pending.id}", headers=admin_headers).json()
        last = client.get(f"/admin/orders/{delivered.id}", headers=admin_headers).json()

        assert first["suggested_action"] == "processing"
        assert last["suggested_action"] is None

    def test_update_status(self, client, admin_headers, make_order):
        order = make_order()

        response = client.patch(
            f"/admin/orders/{order.id}/status", json={"status": "shipped"}, headers=admin_headers
        )
        timeline = client.get(f"/admin/orders/{order.id}/timeline", headers=admin_headers).json()

        assert response.status_code == 200
        assert response.json()["status"] == "shipped"
        assert timeline[-1]["meta"] == {"from": "pending", "to": "shipped"}

    def test_invalid_status(self, client, admin_headers, make_order):
        order = make_order()

        response = client.patch(
            f"/admin/orders/{order.id}/status", json={"status": "cancelled"}, headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_status"

    def test_unknown_order(self, client, admin_headers):
        response = client.patch(
            "/admin/orders/missing/status", json={"status": "shipped"}, headers=admin_headers
        )

        assert response.status_code == 404

    def test_advance(self, client, admin_headers, make_order):
        order = make_order()
        delivered = make_order(status="delivered")

        advanced = client.post(f"/admin/orders/{order.id}/advance", headers=admin_headers).json()
        unchanged = client.post(f"/admin/orders/{delivered.id}/advance", headers=admin_headers).json()

        assert advanced["status"] == "processing"
        assert unchanged["status"] == "delivered"


class TestWebhookRoute:
    def test_bad_signature(self, client):
        response = client.post(
            "/payments/webhook",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "payment_verification_failed"

    def test_missing_signature(self, client):
        assert client.post("/payments/webhook", content=b"{}").status_code == 400

    def test_signed_success_event(self, client, make_order):
        order = make_order()
        body, signature = signed_webhook({
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "object": "payment_intent", "metadata": {"orderId": order.id}}},
        })

        first = client.post("/payments/webhook", content=body, headers={"Stripe-Signature": signature})
        replay = client.post("/payments/webhook", content=body, headers={"Stripe-Signature": signature})

        assert first.status_code == 200
        assert first.json()["status"] == "processing"
        assert first.json()["changed"] is True
        assert replay.json()["changed"] is False


class TestConfirmRoute:
    def test_connected_client_gets_confirmation(self, client, make_order, customer_headers, monkeypatch):
        import stripe

        order = make_order()
        intent = {"id": "pi_1", "status": "succeeded", "metadata": {"orderId": order.id}}
        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda intent_id, **kwargs: intent)

        response = client.get(
            "/payments/confirm",
            params={"order_id": order.id, "payment_intent_client_secret": "pi_1_secret_abc"},
            headers=customer_headers,
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "succeeded"
        assert response.json()["payment_received"] is True


class TestLiveOrders:
    def test_rejects_non_admin(self, client, customer_token):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/live/admin/orders?token={customer_token}"):
                pass

        assert exc_info.value.code == 1008

    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/live/orders?token=garbage"):
                pass

    def test_customer_sees_admin_change(self, client, customer_token, admin_headers, make_order):
        mine = make_order(user_id="user-1")
        make_order(user_id="user-2")

        with client.websocket_connect(f"/live/orders?token={customer_token}") as ws:
            snapshot = ws.receive_json()
            assert snapshot["type"] == "snapshot"
            assert [o["id"] for o in snapshot["orders"]] == [mine.id]

            client.patch(f"/admin/orders/{mine.id}/status", json={"status": "shipped"}, headers=admin_headers)

            update = ws.receive_json()
            notification = ws.receive_json()

        assert update["type"] == "order"
        assert update["order"]["status"] == "shipped"
        assert notification["type"] == "notification"
        assert notification["message"] == f"Order #{mine.id[:8]} status changed to shipped"

    def test_admin_changes_status(self, client, admin_token, admin_headers, make_order):
        order = make_order()

        with client.websocket_connect(f"/live/admin/orders?token={admin_token}") as ws:
            snapshot = ws.receive_json()
            assert snapshot["total_items"] == 1

            ws.send_json({"action": "change_status", "order_id": order.id, "status": "shipped"})
            frames = [ws.receive_json() for _ in range(3)]

        assert all(f["type"] == "order" for f in frames)
        assert all(f["order"]["status"] == "shipped" for f in frames)
        stored = client.get(f"/admin/orders/{order.id}", headers=admin_headers).json()
        assert stored["order"]["status"] == "shipped"

    def test_admin_invalid_status(self, client, admin_token, make_order):
        order = make_order()

        with client.websocket_connect(f"/live/admin/orders?token={admin_token}") as ws:
            ws.receive_json()
            ws.send_json({"action": "change_status", "order_id": order.id, "status": "cancelled"})
            frame = ws.receive_json()

        assert frame["type"] == "error"
        assert frame["error"] == "invalid_status"
        assert frame["order_id"] == order.id

    def test_customer_cannot_change_status(self, client, customer_token, make_order):
        order = make_order()

        with client.websocket_connect(f"/live/orders?token={customer_token}") as ws:
            ws.receive_json()
            ws.send_json({"action": "change_status", "order_id": order.id, "status": "shipped"})
            frame = ws.receive_json()

        assert frame["error"] == "unsupported_action"


class BrokenSubscription:
    closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise RuntimeError("feed broken")

    def close(self):
        self.closed = True


class LeavingWebSocket:
    def __init__(self):
        self.sent = []

    async def receive_json(self):
        await asyncio.sleep(0.05)
        raise WebSocketDisconnect(code=1000)

    async def send_json(self, frame):
        self.sent.append(frame)


def test_live_session_task_failures_are_logged(caplog):
    from storefront.routes.live import _serve
    from storefront.services.order_controller import OrderViewController

    subscription = BrokenSubscription()

    async def scenario():
        controller = OrderViewController(store=None)
        await _serve(LeavingWebSocket(), controller, subscription, asyncio.Queue(), allow_changes=False)

    with caplog.at_level(logging.ERROR, logger="storefront.routes.live"):
        asyncio.run(scenario())

    assert subscription.closed
    assert "live-listener failed" in caplog.text
    assert "feed broken" in caplog.text
