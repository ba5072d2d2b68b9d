from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from typing import List, Optional
from datetime import datetime
from uuid import uuid4

from storefront.models.order_item import OrderItem
from storefront.utils.timestamps import timestamp_column, utc_now


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    customer_name: str = Field(default="", index=True)

    subtotal: float = Field(default=0)
    shipping_cost: float = Field(default=0)
    total: float = Field(default=0)

    status: str = Field(default="pending", index=True)
    payment_received: bool = Field(default=False)
    payment_intent_id: Optional[str] = Field(default=None, index=True)

    # stored in the legacy-compatible shape, see ShippingAddress.to_storage()
    shipping_address: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column(index=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())

    items: List["OrderItem"] = Relationship(back_populates="order")
