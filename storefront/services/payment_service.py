"""
Payment reconciliation against Stripe.

Two trigger paths, the redirect return (client secret) and the webhook, both
end in record_payment_outcome so they converge on the same order state.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import stripe

from storefront.config import settings
from storefront.constants.order_status import OrderStatus
from storefront.errors import (
    PaymentProviderError,
    PaymentVerificationError,
    PermissionDeniedError,
)
from storefront.schemas.orders_schemas import OrderRecord
from storefront.schemas.payment_schemas import PaymentConfirmation, PaymentIntentResponse, PaymentOutcome

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"
PAYMENT_FAILED_EVENT = "payment_intent.payment_failed"

INTENT_SUCCEEDED = "succeeded"
INTENT_PROCESSING = "processing"


def _configure_stripe():
    stripe.api_key = settings.STRIPE_SECRET_KEY


# ---------- convergence point ----------

def apply_payment_succeeded(store, order_id: str):
    record, changed = store.record_payment_outcome(order_id, True)
    if changed:
        logger.info(f"Payment confirmed for order {order_id}")
    return record, changed


def apply_payment_failed(store, order_id: str):
    record, changed = store.record_payment_outcome(order_id, False)
    if changed:
        logger.info(f"Payment failed for order {order_id}")
    return record, changed


# ---------- webhook path ----------

def construct_webhook_event(payload: bytes, sig_header: Optional[str]):
    if not sig_header:
        raise PaymentVerificationError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError as exc:
        logger.warning(f"Webhook signature verification failed: {exc}")
        raise PaymentVerificationError("Invalid webhook signature") from exc
    except ValueError as exc:
        logger.warning(f"Webhook payload could not be parsed: {exc}")
        raise PaymentVerificationError("Invalid webhook payload") from exc


def _event_field(obj, key: str, default=None):
    if obj is None:
        return default
    try:
        return obj[key]
    except (KeyError, TypeError):
        return default


def handle_webhook_event(store, event) -> Dict[str, Any]:
    event_type = _event_field(event, "type")
    logger.info(f"Processing webhook event: {event_type}")

    if event_type not in (PAYMENT_SUCCEEDED_EVENT, PAYMENT_FAILED_EVENT):
        return {"received": True, "handled": False, "event_type": event_type}

    intent = _event_field(_event_field(event, "data"), "object")
    metadata = _event_field(intent, "metadata") or {}
    order_id = _event_field(metadata, "orderId")
    if not order_id:
        logger.warning(f"Webhook {event_type} without orderId metadata, ignoring")
        return {"received": True, "handled": False, "event_type": event_type}

    if event_type == PAYMENT_SUCCEEDED_EVENT:
        record, changed = apply_payment_succeeded(store, order_id)
    else:
        record, changed = apply_payment_failed(store, order_id)

    return {
        "received": True,
        "handled": True,
        "event_type": event_type,
        "order_id": record.id,
        "status": record.status.value,
        "payment_received": record.payment_received,
        "changed": changed,
    }


# ---------- redirect path ----------

def intent_id_from_client_secret(client_secret: str) -> str:
    intent_id, sep, _ = client_secret.partition("_secret_")
    if not sep or not intent_id:
        raise PaymentVerificationError("Malformed payment intent client secret")
    return intent_id


def retrieve_intent_status(client_secret: str, expected_order_id: Optional[str] = None) -> str:
    _configure_stripe()
    intent_id = intent_id_from_client_secret(client_secret)
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as exc:
        logger.error(f"Could not retrieve payment intent {intent_id}: {exc}")
        raise PaymentProviderError(f"Could not retrieve payment intent: {exc}") from exc

    if _event_field(intent, "client_secret") not in (None, client_secret):
        raise PaymentVerificationError("Client secret does not match payment intent")
    if expected_order_id is not None:
        metadata = _event_field(intent, "metadata") or {}
        if _event_field(metadata, "orderId") not in (None, expected_order_id):
            raise PaymentVerificationError("Payment intent belongs to another order")
    return _event_field(intent, "status", "")


async def wait_for_payment_confirmation(
    async_store,
    order_id: str,
    interval: Optional[float] = None,
    max_attempts: Optional[int] = None,
) -> bool:
    """
    Poll payment_received until the webhook has landed.

    Bounded by max_attempts; cancelling the awaiting task stops the polling.
    """
    interval = settings.PAYMENT_POLL_INTERVAL_SECONDS if interval is None else interval
    max_attempts = max_attempts or settings.PAYMENT_POLL_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        record = await async_store.get_order(order_id)
        if record.payment_received:
            logger.info(f"Order {order_id} payment confirmed after {attempt} check(s)")
            return True
        if attempt < max_attempts:
            await asyncio.sleep(interval)

    logger.warning(f"Order {order_id} payment still unconfirmed after {max_attempts} checks")
    return False


async def reconcile_redirect(
    async_store,
    order_id: str,
    client_secret: str,
    user_id: Optional[str] = None,
    interval: Optional[float] = None,
    max_attempts: Optional[int] = None,
) -> PaymentConfirmation:
    # ownership check before talking to the provider
    await async_store.get_order(order_id, user_id=user_id)

    intent_status = await asyncio.to_thread(retrieve_intent_status, client_secret, order_id)

    if intent_status == INTENT_SUCCEEDED:
        record, _ = await async_store.record_payment_outcome(order_id, True)
        outcome = PaymentOutcome.succeeded
    elif intent_status == INTENT_PROCESSING:
        confirmed = await wait_for_payment_confirmation(
            async_store, order_id, interval=interval, max_attempts=max_attempts
        )
        record = await async_store.get_order(order_id)
        outcome = PaymentOutcome.succeeded if confirmed else PaymentOutcome.pending
    else:
        record, _ = await async_store.record_payment_outcome(order_id, False)
        outcome = PaymentOutcome.failed

    return PaymentConfirmation(
        order_id=record.id,
        intent_status=intent_status,
        payment_received=record.payment_received,
        outcome=outcome,
    )


# ---------- intent creation ----------

def _find_or_create_customer(email: Optional[str], user_id: str) -> Optional[str]:
    if not email:
        return None
    customers = stripe.Customer.list(email=email, limit=1)
    data = _event_field(customers, "data") or []
    if data:
        return _event_field(data[0], "id")
    customer = stripe.Customer.create(email=email, metadata={"userId": user_id})
    return _event_field(customer, "id")


def create_payment_intent(store, order: OrderRecord, actor) -> PaymentIntentResponse:
    if order.user_id != actor.id:
        raise PermissionDeniedError("This order belongs to another user")
    if order.payment_received:
        raise PaymentVerificationError("Order is already paid")
    if order.status != OrderStatus.pending:
        raise PaymentVerificationError("Only pending orders can be paid")

    _configure_stripe()
    amount = int(round(order.total * 100))
    try:
        customer_id = _find_or_create_customer(actor.email, actor.id)
        params = {
            "amount": amount,
            "currency": settings.STRIPE_CURRENCY,
            "metadata": {"orderId": order.id, "userId": actor.id},
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        intent = stripe.PaymentIntent.create(**params)
    except stripe.StripeError as exc:
        logger.error(f"Creating payment intent for order {order.id} failed: {exc}")
        raise PaymentProviderError(f"Could not create payment intent: {exc}") from exc

    intent_id = _event_field(intent, "id")
    store.attach_payment_intent(order.id, intent_id)
    logger.info(f"Payment intent {intent_id} created for order {order.id}")

    return PaymentIntentResponse(
        order_id=order.id,
        payment_intent_id=intent_id,
        client_secret=_event_field(intent, "client_secret"),
        amount=amount,
        currency=settings.STRIPE_CURRENCY,
    )
