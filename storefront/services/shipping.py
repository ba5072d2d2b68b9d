from typing import Mapping, Optional, Union

from storefront.config import settings
from storefront.schemas.orders_schemas import ShippingAddress


def _normalize_city(city) -> str:
    if city is None:
        return ""
    return str(city).lower()


class ShippingRateTable:
    """City -> flat shipping fee. Cities not in the table pay the default."""

    def __init__(self, rates: Optional[Mapping[str, float]] = None, default: float = 0.0):
        self.rates = {_normalize_city(city): float(fee) for city, fee in (rates or {}).items()}
        self.default = float(default)

    def cost(self, address: Union[ShippingAddress, Mapping, None]) -> float:
        if address is None:
            return self.default
        if isinstance(address, ShippingAddress):
            city = address.city
        else:
            city = address.get("city")
        return self.rates.get(_normalize_city(city), self.default)


default_rate_table = ShippingRateTable(
    {settings.SHIPPING_FLAGGED_CITY: settings.SHIPPING_SURCHARGE}
)


def calculate_shipping_cost(address) -> float:
    return default_rate_table.cost(address)
