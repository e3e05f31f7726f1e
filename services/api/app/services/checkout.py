"""Checkout: turn the caller's cart into an order in one transaction.

Sequence:
1. read a cart snapshot (items + product rows) and reject an empty cart
2. check every line against current stock
3. price the snapshot
4. in one transaction: insert the order and its item snapshots, reserve stock with guarded
   decrements, delete the cart items, commit

Step 4 performs no I/O besides the database. If any reservation loses a race the whole
transaction is rolled back, the cart is left as it was, and the caller sees
InsufficientStockError.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.status_v1 import OrderPaymentStatusV1, OrderStatusV1
from services.api.app.db.models import CartItem, Order, OrderItem
from services.api.app.models.order import CheckoutRequest
from services.api.app.services import inventory
from services.api.app.services.audit import log_event
from services.api.app.services.cart import CartSnapshot, load_cart_snapshot
from services.api.app.services.inventory import InsufficientStockError
from services.api.app.services.pricing import PriceBreakdown, price_lines
from services.api.app.utils.logging import get_logger
from sqlalchemy import delete
from sqlalchemy.orm import Session

logger = get_logger(__name__)


class CheckoutError(Exception):
    """Base class for checkout business-rule errors."""


class EmptyCartError(CheckoutError):
    def __init__(self) -> None:
        super().__init__("Your cart is empty")


def check_availability(snapshot: CartSnapshot) -> None:
    """Raise for the first line whose quantity exceeds the stock read in the snapshot."""

    for line in snapshot.lines:
        if line.quantity > line.product.stock:
            raise InsufficientStockError(
                product_id=line.product.id,
                product_name=line.product.name,
                available=line.product.stock,
                requested=line.quantity,
            )


def price_snapshot(snapshot: CartSnapshot, shipping_city: str) -> PriceBreakdown:
    return price_lines(
        (
            (line.product.id, line.product.name, line.product, line.quantity)
            for line in snapshot.lines
        ),
        shipping_city=shipping_city,
    )


def generate_order_number(now: datetime | None = None) -> str:
    # Date prefix for humans, 48 random bits for uniqueness; orders.order_number is unique.
    now = now or datetime.utcnow()
    return f"CMD-{now:%Y%m%d}-{secrets.token_hex(6).upper()}"


def place_order(db: Session, user_id: str, request: CheckoutRequest) -> Order:
    """Create an order from the user's cart or raise without leaving any trace.

    Raises EmptyCartError or InsufficientStockError for business-rule failures. Any other
    exception (database errors included) also rolls the transaction back before
    propagating.
    """

    snapshot = load_cart_snapshot(db, user_id)
    if snapshot is None or snapshot.is_empty:
        raise EmptyCartError()

    check_availability(snapshot)
    breakdown = price_snapshot(snapshot, request.shipping_city)

    try:
        order = Order(
            user_id=user_id,
            order_number=generate_order_number(),
            subtotal=breakdown.subtotal,
            shipping_cost=breakdown.shipping_cost,
            total_amount=breakdown.total,
            status=OrderStatusV1.PENDING.value,
            payment_status=OrderPaymentStatusV1.PENDING.value,
            payment_method=request.payment_method.value,
            shipping_address=request.shipping_address,
            shipping_city=request.shipping_city,
            shipping_postal_code=request.shipping_postal_code,
            shipping_country=request.shipping_country,
            phone=request.phone,
            delivery_instructions=request.delivery_instructions,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                price=line.unit_price,
                subtotal=line.subtotal,
            )
            for line in breakdown.lines
        ]
        db.add(order)
        db.flush()

        for line in breakdown.lines:
            inventory.reserve(db, line.product_id, line.quantity)

        db.execute(delete(CartItem).where(CartItem.cart_id == snapshot.cart_id))

        log_event(
            db,
            order_id=order.id,
            user_id=user_id,
            entity_type=EntityTypeV1.ORDER,
            entity_id=order.id,
            event_type=EventTypeV1.ORDER_PLACED,
            event_payload={
                "order_number": order.order_number,
                "total_amount": order.total_amount,
                "items": [
                    {"product_id": line.product_id, "quantity": line.quantity}
                    for line in breakdown.lines
                ],
            },
        )
        db.commit()
    except InsufficientStockError as e:
        db.rollback()
        logger.info(
            "checkout_stock_race_lost",
            user_id=user_id,
            product_id=e.product_id,
            available=e.available,
            requested=e.requested,
        )
        raise
    except Exception:
        db.rollback()
        raise

    logger.info(
        "order_placed",
        user_id=user_id,
        order_id=order.id,
        order_number=order.order_number,
        total_amount=order.total_amount,
    )
    return order
