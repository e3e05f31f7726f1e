from __future__ import annotations

from dataclasses import dataclass

import pytest
from services.api.app.services import pricing


@dataclass
class _Product:
    price: int
    discount_price: int | None = None
    shipping_cost: int | None = None
    stock: int = 10


def test_effective_price_uses_lower_discount_only() -> None:
    assert pricing.effective_price(_Product(price=1000)) == 1000
    assert pricing.effective_price(_Product(price=1000, discount_price=800)) == 800
    assert pricing.effective_price(_Product(price=1000, discount_price=1200)) == 1000


def test_discount_flags() -> None:
    on_sale = _Product(price=15000, discount_price=12000)
    assert pricing.is_on_sale(on_sale)
    assert pricing.discount_percentage(on_sale) == 20

    full_price = _Product(price=15000)
    assert not pricing.is_on_sale(full_price)
    assert pricing.discount_percentage(full_price) == 0


def test_in_stock_flag() -> None:
    assert pricing.is_in_stock(_Product(price=1, stock=1))
    assert not pricing.is_in_stock(_Product(price=1, stock=0))


@pytest.mark.parametrize(
    "city,fee",
    [
        ("Libreville", 2000),
        ("Port-Gentil", 5000),
        ("Franceville", 7000),
        ("Lambaréné", 4000),
        ("Somewhere else", pricing.FALLBACK_SHIPPING_FEE),
    ],
)
def test_city_shipping_fee(city: str, fee: int) -> None:
    assert pricing.city_shipping_fee(city) == fee


def test_price_lines_two_units_to_libreville() -> None:
    breakdown = pricing.price_lines(
        [(1, "P", _Product(price=1000, stock=5), 2)],
        shipping_city="Libreville",
    )

    assert breakdown.subtotal == 2000
    assert breakdown.shipping_cost == 2000
    assert breakdown.total == 4000
    assert breakdown.lines[0].unit_price == 1000
    assert breakdown.lines[0].subtotal == 2000


def test_price_lines_adds_product_surcharges_and_discounts() -> None:
    breakdown = pricing.price_lines(
        [
            (1, "Pagne", _Product(price=15000, discount_price=12000), 2),
            (2, "Huile", _Product(price=6000, shipping_cost=1500), 3),
        ],
        shipping_city="Oyem",
    )

    assert breakdown.subtotal == 2 * 12000 + 3 * 6000
    assert breakdown.shipping_cost == 1500 + 6000
    assert breakdown.total == breakdown.subtotal + breakdown.shipping_cost
    assert sum(line.subtotal for line in breakdown.lines) == breakdown.subtotal
