"""Pure pricing rules over product snapshots.

Checkout, cart display and order history all go through these functions so that a price
shown to the customer is always the price that gets charged.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

# Flat delivery fee per serviceable city, in FCFA.
CITY_SHIPPING_FEES: dict[str, int] = {
    "Libreville": 2000,
    "Port-Gentil": 5000,
    "Franceville": 7000,
    "Oyem": 6000,
    "Moanda": 7000,
    "Mouila": 5000,
    "Lambaréné": 4000,
    "Tchibanga": 6000,
    "Koulamoutou": 6000,
    "Makokou": 7000,
}

FALLBACK_SHIPPING_FEE = 5000

SERVICEABLE_CITIES: frozenset[str] = frozenset(CITY_SHIPPING_FEES)


class PricedProduct(Protocol):
    price: int
    discount_price: int | None
    shipping_cost: int | None
    stock: int


@dataclass(frozen=True, slots=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: int
    subtotal: int


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    lines: list[PricedLine]
    subtotal: int
    shipping_cost: int
    total: int


def effective_price(product: PricedProduct) -> int:
    """The discounted price when it is set and lower than the list price, else the list price."""

    if product.discount_price is not None and product.discount_price < product.price:
        return product.discount_price
    return product.price


def is_on_sale(product: PricedProduct) -> bool:
    return product.discount_price is not None and product.discount_price < product.price


def discount_percentage(product: PricedProduct) -> int:
    if not is_on_sale(product) or product.price <= 0:
        return 0
    assert product.discount_price is not None
    return round((product.price - product.discount_price) * 100 / product.price)


def is_in_stock(product: PricedProduct) -> bool:
    return product.stock > 0


def city_shipping_fee(city: str) -> int:
    return CITY_SHIPPING_FEES.get(city, FALLBACK_SHIPPING_FEE)


def price_lines(
    lines: Iterable[tuple[int, str, PricedProduct, int]],
    *,
    shipping_city: str,
) -> PriceBreakdown:
    """Price (product_id, product_name, product, quantity) tuples for delivery to a city.

    Shipping is the per-product surcharge, counted once per product line, plus the city's
    base fee.
    """

    priced: list[PricedLine] = []
    subtotal = 0
    surcharge = 0
    for product_id, product_name, product, quantity in lines:
        unit_price = effective_price(product)
        line_subtotal = unit_price * quantity
        subtotal += line_subtotal
        surcharge += product.shipping_cost or 0
        priced.append(
            PricedLine(
                product_id=product_id,
                product_name=product_name,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=line_subtotal,
            )
        )

    shipping_cost = surcharge + city_shipping_fee(shipping_city)
    return PriceBreakdown(
        lines=priced,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total=subtotal + shipping_cost,
    )
