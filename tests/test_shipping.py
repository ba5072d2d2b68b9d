"""Tests for the shipping cost policy."""

import pytest

from storefront.schemas.orders_schemas import ShippingAddress
from storefront.services.shipping import ShippingRateTable, calculate_shipping_cost


@pytest.mark.parametrize("city", ["Yerevan", "yerevan", "YEREVAN", "yEREVAN"])
def test_flagged_city_pays_surcharge(city):
    assert calculate_shipping_cost(ShippingAddress(city=city)) == pytest.approx(5.00)


@pytest.mark.parametrize("city", ["Gyumri", "New York", "", " Yerevan ", "Yerevan City"])
def test_other_cities_ship_free(city):
    assert calculate_shipping_cost({"city": city}) == 0.0


def test_missing_address_ships_free():
    assert calculate_shipping_cost(None) == 0.0
    assert calculate_shipping_cost({}) == 0.0


def test_custom_rate_table():
    table = ShippingRateTable({"Gyumri": 3, "Vanadzor": 4.5}, default=1.0)

    assert table.cost({"city": "gyumri"}) == 3.0
    assert table.cost(ShippingAddress(city="VANADZOR")) == 4.5
    assert table.cost({"city": "Yerevan"}) == 1.0
