"""Customer-side order management: history, tracking, cancellation, delivery confirmation."""

from __future__ import annotations

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.status_v1 import OrderPaymentStatusV1, OrderStatusV1
from services.api.app.db.models import EventLog, Order
from services.api.app.services import inventory
from services.api.app.services.audit import log_event
from services.api.app.services.transitions import (
    InvalidTransitionError,
    can_transition_order,
    transition_order,
)
from services.api.app.utils.logging import get_logger
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

logger = get_logger(__name__)

DEFAULT_CANCELLATION_REASON = "Cancelled by customer"


class OrderNotFoundError(Exception):
    def __init__(self) -> None:
        super().__init__("Order not found")


class OrderNotCancellableError(Exception):
    def __init__(self, status: str, *, paid: bool = False) -> None:
        if paid:
            message = "This order has been paid and must be refunded instead of cancelled"
        else:
            message = f"This order can no longer be cancelled. Current status: {status}"
        super().__init__(message)
        self.status = status
        self.paid = paid


class OrderNotShippedError(Exception):
    def __init__(self, status: str) -> None:
        super().__init__("The order has not been shipped yet")
        self.status = status


# (status, label, timestamp column) for each tracking timeline step, in order.
TIMELINE_STEPS: list[tuple[OrderStatusV1, str, str]] = [
    (OrderStatusV1.PENDING, "Order received", "created_at"),
    (OrderStatusV1.CONFIRMED, "Order confirmed", "confirmed_at"),
    (OrderStatusV1.PROCESSING, "Being prepared", "processing_at"),
    (OrderStatusV1.SHIPPED, "Shipped", "shipped_at"),
    (OrderStatusV1.DELIVERED, "Delivered", "delivered_at"),
]

_PROGRESS = [step[0].value for step in TIMELINE_STEPS]


def list_orders(
    db: Session,
    user_id: str,
    *,
    status: str | None = None,
    limit: int = 50,
) -> list[Order]:
    query = (
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    if status:
        query = query.where(Order.status == status)
    return list(db.execute(query).scalars())


def get_order(db: Session, user_id: str, order_id: int) -> Order:
    order = db.execute(
        select(Order)
        .where(Order.id == order_id, Order.user_id == user_id)
        .options(selectinload(Order.items), selectinload(Order.payment))
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError()
    return order


def get_order_by_number(db: Session, user_id: str, order_number: str) -> Order:
    order = db.execute(
        select(Order)
        .where(Order.order_number == order_number, Order.user_id == user_id)
        .options(selectinload(Order.items), selectinload(Order.payment))
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError()
    return order


def build_timeline(order: Order) -> list[dict]:
    reached = _PROGRESS.index(order.status) if order.status in _PROGRESS else -1
    timeline = []
    for idx, (status, label, ts_column) in enumerate(TIMELINE_STEPS):
        timeline.append(
            {
                "status": status.value,
                "label": label,
                "completed": idx == 0 or idx <= reached,
                "date": getattr(order, ts_column),
            }
        )
    return timeline


def cancel_order(db: Session, user_id: str, order_id: int, reason: str | None = None) -> Order:
    """Cancel an unpaid order and put its items back in stock, atomically."""

    order = get_order(db, user_id, order_id)

    if order.payment_status == OrderPaymentStatusV1.PAID.value:
        raise OrderNotCancellableError(order.status, paid=True)
    if not can_transition_order(order.status, OrderStatusV1.CANCELLED):
        raise OrderNotCancellableError(order.status)

    reason = reason or DEFAULT_CANCELLATION_REASON
    try:
        if not transition_order(db, order, OrderStatusV1.CANCELLED, cancellation_reason=reason):
            db.rollback()
            db.refresh(order)
            raise OrderNotCancellableError(order.status)

        for item in order.items:
            inventory.release(db, item.product_id, item.quantity)

        log_event(
            db,
            order_id=order.id,
            user_id=user_id,
            entity_type=EntityTypeV1.ORDER,
            entity_id=order.id,
            event_type=EventTypeV1.ORDER_CANCELLED,
            event_payload={"reason": reason},
        )
        db.commit()
    except OrderNotCancellableError:
        raise
    except Exception:
        db.rollback()
        raise

    logger.info("order_cancelled", order_id=order.id, user_id=user_id)
    return order


def confirm_delivery(db: Session, user_id: str, order_id: int) -> Order:
    order = get_order(db, user_id, order_id)

    if order.status != OrderStatusV1.SHIPPED.value:
        raise OrderNotShippedError(order.status)

    try:
        if not transition_order(db, order, OrderStatusV1.DELIVERED):
            raise InvalidTransitionError("Order", order.status, OrderStatusV1.DELIVERED.value)

        log_event(
            db,
            order_id=order.id,
            user_id=user_id,
            entity_type=EntityTypeV1.ORDER,
            entity_id=order.id,
            event_type=EventTypeV1.ORDER_DELIVERED,
            event_payload={},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return order


def list_order_events(db: Session, order: Order) -> list[EventLog]:
    return list(
        db.execute(
            select(EventLog)
            .where(EventLog.order_id == order.id)
            .order_by(EventLog.created_at.asc())
        ).scalars()
    )
