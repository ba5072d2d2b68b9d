from sqlmodel import SQLModel, Field , Relationship
from typing import Optional , TYPE_CHECKING
from datetime import datetime

from storefront.utils.timestamps import timestamp_column, utc_now

if TYPE_CHECKING:
    from storefront.models.order import Order

class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    product_id: str

    # snapshot at purchase time, independent of the live catalog
    product_name: str = Field(default="")
    price: float
    quantity: int

    created_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())

    order: Optional["Order"] = Relationship(back_populates="items")
