"""Explicit state machines for orders and payments.

State is always the enumerated status column, never inferred from which timestamps are set.
Writes go through compare-and-set updates so two requests racing on the same row cannot
both apply a transition.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from packages.shared.schemas.status_v1 import OrderStatusV1, PaymentStatusV1
from services.api.app.db.models import Order, Payment
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

PAYMENT_TRANSITIONS: dict[PaymentStatusV1, frozenset[PaymentStatusV1]] = {
    PaymentStatusV1.PENDING: frozenset(
        {PaymentStatusV1.PENDING, PaymentStatusV1.COMPLETED, PaymentStatusV1.FAILED}
    ),
    # The gateway's status query is authoritative, so a late success overrides a failure.
    PaymentStatusV1.FAILED: frozenset({PaymentStatusV1.FAILED, PaymentStatusV1.COMPLETED}),
    PaymentStatusV1.COMPLETED: frozenset({PaymentStatusV1.REFUNDED}),
    PaymentStatusV1.REFUNDED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatusV1, frozenset[OrderStatusV1]] = {
    OrderStatusV1.PENDING: frozenset(
        {
            OrderStatusV1.CONFIRMED,
            OrderStatusV1.PROCESSING,
            OrderStatusV1.CANCELLED,
            OrderStatusV1.REFUNDED,
        }
    ),
    OrderStatusV1.CONFIRMED: frozenset(
        {
            OrderStatusV1.PROCESSING,
            OrderStatusV1.SHIPPED,
            OrderStatusV1.CANCELLED,
            OrderStatusV1.REFUNDED,
        }
    ),
    OrderStatusV1.PROCESSING: frozenset(
        {OrderStatusV1.SHIPPED, OrderStatusV1.CANCELLED, OrderStatusV1.REFUNDED}
    ),
    OrderStatusV1.SHIPPED: frozenset({OrderStatusV1.DELIVERED, OrderStatusV1.REFUNDED}),
    OrderStatusV1.DELIVERED: frozenset({OrderStatusV1.REFUNDED}),
    OrderStatusV1.CANCELLED: frozenset(),
    OrderStatusV1.REFUNDED: frozenset(),
    OrderStatusV1.FAILED: frozenset(),
}

# Timestamp column stamped when an order enters a status.
_ORDER_STATUS_TIMESTAMPS: dict[OrderStatusV1, str] = {
    OrderStatusV1.CONFIRMED: "confirmed_at",
    OrderStatusV1.PROCESSING: "processing_at",
    OrderStatusV1.SHIPPED: "shipped_at",
    OrderStatusV1.DELIVERED: "delivered_at",
    OrderStatusV1.CANCELLED: "cancelled_at",
    OrderStatusV1.REFUNDED: "refunded_at",
}


class InvalidTransitionError(Exception):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


def payment_sources_for(target: PaymentStatusV1) -> list[str]:
    return [src.value for src, targets in PAYMENT_TRANSITIONS.items() if target in targets]


def order_sources_for(target: OrderStatusV1) -> list[str]:
    return [src.value for src, targets in ORDER_TRANSITIONS.items() if target in targets]


def can_transition_order(current: str, target: OrderStatusV1) -> bool:
    try:
        return target in ORDER_TRANSITIONS[OrderStatusV1(current)]
    except ValueError:
        return False


def transition_payment(
    db: Session,
    payment: Payment,
    target: PaymentStatusV1,
    **values: Any,
) -> bool:
    """Move a payment to target if its current stored status allows it.

    Returns False when no row matched, i.e. the stored status (possibly changed by a
    concurrent request) does not permit the transition. Does not commit.
    """

    now = datetime.utcnow()
    result = db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(payment_sources_for(target)))
        .values(status=target.value, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    set_committed_value(payment, "status", target.value)
    set_committed_value(payment, "updated_at", now)
    for key, value in values.items():
        set_committed_value(payment, key, value)
    return True


def transition_order(
    db: Session,
    order: Order,
    target: OrderStatusV1,
    **values: Any,
) -> bool:
    """Compare-and-set counterpart of transition_payment for Order.status."""

    now = datetime.utcnow()
    stamped = dict(values)
    ts_column = _ORDER_STATUS_TIMESTAMPS.get(target)
    if ts_column is not None:
        stamped.setdefault(ts_column, now)

    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status.in_(order_sources_for(target)))
        .values(status=target.value, **stamped)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    set_committed_value(order, "status", target.value)
    for key, value in stamped.items():
        set_committed_value(order, key, value)
    return True
