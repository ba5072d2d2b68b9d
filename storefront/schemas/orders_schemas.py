from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_serializer, model_validator

from storefront.constants.order_status import OrderStatus

UNKNOWN = "Unknown"

# canonical name -> historical spellings seen in stored rows and old clients
ADDRESS_ALIASES = {
    "full_name": ("fullName", "name"),
    "street": ("address",),
    "city": (),
    "state": (),
    "zip": ("zipCode", "zip_code"),
    "country": (),
}


class ShippingAddress(BaseModel):
    full_name: str = UNKNOWN
    street: str = UNKNOWN
    city: str = UNKNOWN
    state: str = UNKNOWN
    zip: str = UNKNOWN
    country: str = UNKNOWN

    @model_validator(mode="before")
    @classmethod
    def reconcile_names(cls, data):
        if not isinstance(data, dict):
            return data
        canonical = {}
        for name, aliases in ADDRESS_ALIASES.items():
            for key in (name, *aliases):
                value = data.get(key)
                if value is not None and str(value).strip():
                    canonical[name] = str(value)
                    break
        return canonical

    def to_storage(self) -> dict:
        """Canonical names plus the legacy ones older clients still read."""
        return {
            "full_name": self.full_name,
            "fullName": self.full_name,
            "street": self.street,
            "address": self.street,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "zipCode": self.zip,
            "country": self.country,
        }


class OrderRecord(BaseModel):
    id: str
    user_id: str
    customer_name: str = ""
    status: OrderStatus = OrderStatus.pending
    subtotal: float = 0
    shipping_cost: float = 0
    total: float = 0
    shipping_address: ShippingAddress = ShippingAddress()
    payment_received: bool = False
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("shipping_address")
    def serialize_address(self, address: ShippingAddress):
        return address.to_storage()


class OrderItemRecord(BaseModel):
    id: Optional[int] = None
    order_id: str
    product_id: str
    product_name: str = ""
    price: float
    quantity: int

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class OrderFilters(BaseModel):
    status: Optional[str] = None
    search: Optional[str] = None
    page: int = 1


class OrderPage(BaseModel):
    total_items: int
    total_pages: int
    current_page: int
    limit: int
    results: List[OrderRecord]


class OrderDetail(BaseModel):
    order: OrderRecord
    items: List[OrderItemRecord]
    suggested_action: Optional[OrderStatus] = None


class StatusUpdate(BaseModel):
    # plain str so unknown values reach InvalidStatusError instead of a schema error
    status: str


class OrderEventRead(BaseModel):
    id: str
    order_id: str
    event_type: str
    label: str
    meta: Optional[dict] = None
    created_by: str
    created_at: datetime
