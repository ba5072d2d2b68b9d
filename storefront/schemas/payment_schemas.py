from enum import Enum

from pydantic import BaseModel


class PaymentOutcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    pending = "pending"


class PaymentIntentCreate(BaseModel):
    order_id: str


class PaymentIntentResponse(BaseModel):
    order_id: str
    payment_intent_id: str
    client_secret: str
    amount: int
    currency: str


class PaymentConfirmation(BaseModel):
    order_id: str
    intent_status: str
    payment_received: bool
    outcome: PaymentOutcome
