"""Payment initiation, lookup and refund."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.status_v1 import (
    MobileProviderV1,
    OrderPaymentStatusV1,
    OrderStatusV1,
    PaymentMethodV1,
    PaymentStatusV1,
    UserRoleV1,
)
from services.api.app.db.models import Order, Payment, User
from services.api.app.services import inventory
from services.api.app.services.audit import log_event
from services.api.app.services.gateway_base import GatewayError, PaymentGateway
from services.api.app.services.transitions import (
    can_transition_order,
    transition_order,
    transition_payment,
)
from services.api.app.utils.logging import get_logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = get_logger(__name__)

PAYABLE_ORDER_STATUSES = (OrderPaymentStatusV1.UNPAID.value, OrderPaymentStatusV1.PENDING.value)


class PaymentError(Exception):
    """Base class for payment business-rule errors."""


class OrderNotPayableError(PaymentError):
    def __init__(self, order_id: int) -> None:
        super().__init__("Order not found or already paid")
        self.order_id = order_id


class DuplicatePaymentError(PaymentError):
    def __init__(self, order_id: int) -> None:
        super().__init__("Payment already initiated for this order")
        self.order_id = order_id


class PaymentInitiationError(PaymentError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Payment initiation failed: {detail}")
        self.detail = detail


class PaymentNotFoundError(PaymentError):
    def __init__(self) -> None:
        super().__init__("Payment not found")


class RefundNotAllowedError(PaymentError):
    def __init__(self, status: str) -> None:
        super().__init__(f"Only completed payments can be refunded. Current status: {status}")
        self.status = status


@dataclass(frozen=True, slots=True)
class InitiatedPayment:
    payment: Payment
    gateway_response: dict[str, Any]


def generate_reference() -> str:
    return f"SP-{uuid4().hex[:20].upper()}"


def initiate_payment(
    db: Session,
    gateway: PaymentGateway,
    *,
    user_id: str,
    order_id: int,
    provider: MobileProviderV1,
    phone: str,
    callback_url: str,
) -> InitiatedPayment:
    """Create the order's single Payment and ask the gateway to start a USSD push.

    The Payment row is flushed (not committed) before the gateway call and the transaction
    stays open across it: the unique index on payments.order_id is what rejects a
    concurrent second initiation, and rolling back on gateway failure is what guarantees no
    orphaned Payment row. The open window is exactly one bounded-timeout HTTP call.
    """

    order = db.execute(
        select(Order).where(
            Order.id == order_id,
            Order.user_id == user_id,
            Order.payment_status.in_(PAYABLE_ORDER_STATUSES),
        )
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotPayableError(order_id)

    existing = db.execute(select(Payment.id).where(Payment.order_id == order.id)).first()
    if existing is not None:
        raise DuplicatePaymentError(order.id)

    payment = Payment(
        order_id=order.id,
        payment_method=PaymentMethodV1.MOBILE_MONEY.value,
        provider=provider.value,
        phone=phone,
        amount=order.total_amount,
        reference=generate_reference(),
        status=PaymentStatusV1.PENDING.value,
    )
    db.add(payment)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise DuplicatePaymentError(order.id) from e

    try:
        result = gateway.initiate_payment(
            provider,
            amount=payment.amount,
            reference=payment.reference,
            phone=payment.phone,
            callback_url=callback_url,
        )
    except GatewayError as e:
        db.rollback()
        logger.error(
            "payment_initiation_failed",
            order_id=order_id,
            provider=provider.value,
            error=str(e),
        )
        raise PaymentInitiationError(str(e)) from e
    except Exception:
        db.rollback()
        raise

    try:
        payment.provider_reference = result.transaction_id
        payment.provider_response_json = result.raw
        log_event(
            db,
            order_id=order.id,
            user_id=user_id,
            entity_type=EntityTypeV1.PAYMENT,
            entity_id=payment.id,
            event_type=EventTypeV1.PAYMENT_INITIATED,
            event_payload={
                "provider": provider.value,
                "amount": payment.amount,
                "reference": payment.reference,
                "provider_reference": result.transaction_id,
            },
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicatePaymentError(order.id) from e
    except Exception:
        db.rollback()
        raise

    logger.info(
        "payment_initiated",
        order_id=order.id,
        reference=payment.reference,
        provider=provider.value,
        provider_reference=result.transaction_id,
        amount=payment.amount,
    )
    return InitiatedPayment(payment=payment, gateway_response=result.raw)


def get_order_payment(db: Session, *, user_id: str, order_id: int) -> Payment:
    payment = db.execute(
        select(Payment)
        .join(Order, Order.id == Payment.order_id)
        .where(Order.id == order_id, Order.user_id == user_id)
    ).scalar_one_or_none()
    if payment is None:
        raise PaymentNotFoundError()
    return payment


def refund_payment(
    db: Session,
    *,
    payment_id: int,
    actor: User,
    reason: str | None = None,
) -> Payment:
    """Refund a completed payment in full and put the order's items back in stock.

    Orders that were cancelled before their payment completed already had their stock
    restored by the cancellation, so only the payment side is updated for them.
    """

    payment = db.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFoundError()

    order = payment.order
    if order.user_id != actor.id and actor.role != UserRoleV1.ADMIN.value:
        raise PaymentNotFoundError()

    if payment.status != PaymentStatusV1.COMPLETED.value:
        raise RefundNotAllowedError(payment.status)

    now = datetime.utcnow()
    restock = order.status != OrderStatusV1.CANCELLED.value
    try:
        if not transition_payment(
            db,
            payment,
            PaymentStatusV1.REFUNDED,
            refund_amount=payment.amount,
            refund_reason=reason,
            refunded_at=now,
        ):
            db.rollback()
            db.refresh(payment)
            raise RefundNotAllowedError(payment.status)

        if can_transition_order(order.status, OrderStatusV1.REFUNDED):
            transition_order(db, order, OrderStatusV1.REFUNDED, refunded_at=now)
        order.payment_status = OrderPaymentStatusV1.REFUNDED.value

        if restock:
            for item in order.items:
                inventory.release(db, item.product_id, item.quantity)

        log_event(
            db,
            order_id=order.id,
            user_id=actor.id,
            entity_type=EntityTypeV1.PAYMENT,
            entity_id=payment.id,
            event_type=EventTypeV1.PAYMENT_REFUNDED,
            event_payload={
                "refund_amount": payment.amount,
                "reason": reason,
                "restocked": restock,
            },
        )
        db.commit()
    except RefundNotAllowedError:
        raise
    except Exception:
        db.rollback()
        raise

    logger.info(
        "payment_refunded",
        payment_id=payment.id,
        order_id=order.id,
        amount=payment.amount,
        restocked=restock,
    )
    return payment
