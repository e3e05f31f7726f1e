"""Cart access and the read-only snapshot checkout works from."""

from __future__ import annotations

from dataclasses import dataclass

from services.api.app.db.models import Cart, CartItem, Product
from services.api.app.services import pricing
from services.api.app.services.inventory import InsufficientStockError, UnknownProductError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload


class CartItemNotFoundError(Exception):
    def __init__(self, item_id: int) -> None:
        super().__init__("Cart item not found")
        self.item_id = item_id


@dataclass(frozen=True, slots=True)
class CartLine:
    cart_item_id: int
    product: Product
    quantity: int


@dataclass(frozen=True, slots=True)
class CartSnapshot:
    cart_id: int
    user_id: str
    lines: list[CartLine]

    @property
    def is_empty(self) -> bool:
        return not self.lines


def get_or_create_cart(db: Session, user_id: str) -> Cart:
    """Carts are created lazily, the first time a user touches theirs."""

    cart = db.execute(
        select(Cart)
        .where(Cart.user_id == user_id)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
    ).scalar_one_or_none()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.commit()
    return cart


def load_cart_snapshot(db: Session, user_id: str) -> CartSnapshot | None:
    cart = db.execute(
        select(Cart)
        .where(Cart.user_id == user_id)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
    ).scalar_one_or_none()
    if cart is None:
        return None

    return CartSnapshot(
        cart_id=cart.id,
        user_id=user_id,
        lines=[
            CartLine(cart_item_id=item.id, product=item.product, quantity=item.quantity)
            for item in cart.items
        ],
    )


def add_item(db: Session, user_id: str, product_id: int, quantity: int) -> Cart:
    """Add quantity of a product, merging with an existing line. Checked against stock."""

    product = db.get(Product, product_id)
    if product is None:
        raise UnknownProductError(product_id)

    cart = get_or_create_cart(db, user_id)
    existing = next((item for item in cart.items if item.product_id == product_id), None)
    wanted = quantity + (existing.quantity if existing is not None else 0)
    if wanted > product.stock:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=product.stock,
            requested=wanted,
        )

    if existing is not None:
        existing.quantity = wanted
    else:
        cart.items.append(CartItem(product_id=product.id, quantity=quantity, product=product))
    db.commit()
    return cart


def remove_item(db: Session, user_id: str, item_id: int) -> Cart:
    cart = get_or_create_cart(db, user_id)
    item = next((it for it in cart.items if it.id == item_id), None)
    if item is None:
        raise CartItemNotFoundError(item_id)

    cart.items.remove(item)
    db.commit()
    return cart


def describe_cart(cart: Cart) -> dict:
    items = []
    subtotal = 0
    for item in cart.items:
        unit_price = pricing.effective_price(item.product)
        line_total = unit_price * item.quantity
        subtotal += line_total
        items.append(
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "line_total": line_total,
                "in_stock": pricing.is_in_stock(item.product),
                "on_sale": pricing.is_on_sale(item.product),
                "discount_percentage": pricing.discount_percentage(item.product),
            }
        )
    return {
        "id": cart.id,
        "items": items,
        "items_count": sum(item.quantity for item in cart.items),
        "subtotal": subtotal,
    }


def validate_snapshot(snapshot: CartSnapshot | None) -> list[dict]:
    """Every line whose quantity exceeds current stock; empty when checkout would pass."""

    if snapshot is None:
        return []
    return [
        {
            "product_id": line.product.id,
            "product_name": line.product.name,
            "requested": line.quantity,
            "available": line.product.stock,
        }
        for line in snapshot.lines
        if line.quantity > line.product.stock
    ]
