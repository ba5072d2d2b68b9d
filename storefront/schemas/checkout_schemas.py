from typing import List

from pydantic import AliasChoices, BaseModel, Field

from storefront.schemas.orders_schemas import OrderItemRecord, OrderRecord, ShippingAddress


class CheckoutAddress(BaseModel):
    full_name: str = Field(min_length=1, validation_alias=AliasChoices("full_name", "fullName"))
    street: str = Field(min_length=1, validation_alias=AliasChoices("street", "address"))
    city: str = Field(min_length=1)
    state: str = ""
    zip: str = Field(default="", validation_alias=AliasChoices("zip", "zipCode", "zip_code"))
    country: str = "United States"

    def to_shipping_address(self) -> ShippingAddress:
        return ShippingAddress.model_validate(self.model_dump())


class CheckoutItem(BaseModel):
    product_id: str
    product_name: str = ""
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem]
    shipping_address: CheckoutAddress


class PlaceOrderResponse(BaseModel):
    order: OrderRecord
    items: List[OrderItemRecord]
    message: str
