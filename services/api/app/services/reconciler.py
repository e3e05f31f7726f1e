"""Gateway webhook reconciliation.

The webhook body only tells us *which* payment to look at. Its status field is never used:
the gateway's status endpoint is queried every time, with the payment's own stored ids, and
its answer is applied only if it describes that payment (id, reference, amount). Together
with the compare-and-set transitions this makes the final state independent of delivery
order and duplication.

Outcomes map onto HTTP as follows:
- MalformedWebhookError -> 400, not retried upstream
- TransactionMismatchError -> 400, the gateway answered for a different transaction
- UnknownPaymentError -> 404, not retried upstream
- ReconciliationError -> 500, the gateway is expected to redeliver
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.status_v1 import OrderPaymentStatusV1, PaymentStatusV1
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from services.api.app.db.models import Payment
from services.api.app.services.audit import log_event
from services.api.app.services.gateway_base import PaymentGateway, TransactionStatus
from services.api.app.services.transitions import transition_payment
from services.api.app.utils.logging import get_logger
from sqlalchemy import select
from sqlalchemy.orm import Session

logger = get_logger(__name__)

_STATUS_MAP: dict[str, PaymentStatusV1] = {
    "SUCCESS": PaymentStatusV1.COMPLETED,
    "SUCCESSFUL": PaymentStatusV1.COMPLETED,
    "COMPLETED": PaymentStatusV1.COMPLETED,
    "FAILED": PaymentStatusV1.FAILED,
    "CANCELLED": PaymentStatusV1.FAILED,
    "CANCELED": PaymentStatusV1.FAILED,
    "PENDING": PaymentStatusV1.PENDING,
}

# Payments in these states are acknowledged without touching anything.
_SETTLED = frozenset({PaymentStatusV1.COMPLETED.value, PaymentStatusV1.REFUNDED.value})


class WebhookError(Exception):
    """Base class for webhook processing errors."""


class MalformedWebhookError(WebhookError):
    def __init__(self, detail: str = "Invalid callback payload") -> None:
        super().__init__(detail)


class UnknownPaymentError(WebhookError):
    def __init__(self, reference: str | None, transaction_id: str | None) -> None:
        super().__init__("Payment not found")
        self.reference = reference
        self.transaction_id = transaction_id


class TransactionMismatchError(WebhookError):
    def __init__(self, payment_id: int, field: str) -> None:
        super().__init__("Transaction does not match payment")
        self.payment_id = payment_id
        self.field = field


class ReconciliationError(WebhookError):
    """Transient failure after the payment was resolved; safe for the gateway to retry."""


class Outcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    ALREADY_SETTLED = "already_settled"
    UNMAPPED_STATUS = "unmapped_status"


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: str | None = None
    transaction_id: str | None = None
    status: str | None = None

    @field_validator("reference", "transaction_id", "status", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError("must be a string or integer")
        text = str(value).strip()
        return text or None


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    payment_id: int
    outcome: Outcome
    status: str
    authoritative_status: str | None


def parse_payload(raw: Any) -> WebhookPayload:
    if not isinstance(raw, dict):
        raise MalformedWebhookError()
    try:
        payload = WebhookPayload.model_validate(raw)
    except ValidationError as e:
        raise MalformedWebhookError() from e
    if payload.reference is None and payload.transaction_id is None:
        raise MalformedWebhookError()
    return payload


def map_status(status: str | None) -> PaymentStatusV1 | None:
    if not status:
        return None
    return _STATUS_MAP.get(status.strip().upper())


def _by_reference(db: Session, reference: str) -> Payment | None:
    return db.execute(select(Payment).where(Payment.reference == reference)).scalar_one_or_none()


def _by_transaction_id(db: Session, transaction_id: str) -> Payment | None:
    return db.execute(
        select(Payment).where(Payment.provider_reference == transaction_id).limit(1)
    ).scalar_one_or_none()


def resolve_payment(db: Session, payload: WebhookPayload) -> Payment | None:
    """Find the payment the callback names.

    When both ids are given they must name the same payment. A payment still waiting for its
    gateway id may be named by reference alongside a transaction id nobody else holds.
    """

    if payload.reference is None:
        return _by_transaction_id(db, payload.transaction_id)

    payment = _by_reference(db, payload.reference)
    if payment is None or payload.transaction_id is None:
        return payment

    if payment.provider_reference is not None:
        matches = payment.provider_reference == payload.transaction_id
    else:
        matches = _by_transaction_id(db, payload.transaction_id) is None
    if not matches:
        logger.warning(
            "webhook_identifier_mismatch",
            payment_id=payment.id,
            reference=payload.reference,
            transaction_id=payload.transaction_id,
        )
        raise MalformedWebhookError("Callback identifiers do not match")
    return payment


def _fetch_authoritative(gateway: PaymentGateway, payment: Payment) -> TransactionStatus:
    # Stored ids only; the callback body never picks the transaction that gets queried.
    if payment.provider_reference is not None:
        return gateway.get_status(transaction_id=payment.provider_reference)
    return gateway.get_status(reference=payment.reference)


def _verify_transaction(payment: Payment, transaction: TransactionStatus) -> None:
    mismatched = None
    if (
        payment.provider_reference is not None
        and transaction.transaction_id is not None
        and transaction.transaction_id != payment.provider_reference
    ):
        mismatched = "transaction_id"
    elif transaction.reference is not None and transaction.reference != payment.reference:
        mismatched = "reference"
    elif transaction.amount is not None and transaction.amount != payment.amount:
        mismatched = "amount"

    if mismatched is not None:
        logger.warning(
            "webhook_transaction_mismatch",
            payment_id=payment.id,
            field=mismatched,
            transaction=transaction.raw,
        )
        raise TransactionMismatchError(payment.id, mismatched)


def reconcile(db: Session, gateway: PaymentGateway, raw_payload: Any) -> ReconcileResult:
    payload = parse_payload(raw_payload)

    payment = resolve_payment(db, payload)
    if payment is None:
        logger.warning(
            "webhook_payment_not_found",
            reference=payload.reference,
            transaction_id=payload.transaction_id,
            claimed_status=payload.status,
        )
        raise UnknownPaymentError(payload.reference, payload.transaction_id)

    try:
        return _apply(db, gateway, payment, payload)
    except TransactionMismatchError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(
            "webhook_reconciliation_failed",
            payment_id=payment.id,
            reference=payload.reference,
            transaction_id=payload.transaction_id,
            exc_info=True,
        )
        if isinstance(e, ReconciliationError):
            raise
        raise ReconciliationError(str(e)) from e


def _apply(
    db: Session,
    gateway: PaymentGateway,
    payment: Payment,
    payload: WebhookPayload,
) -> ReconcileResult:
    authoritative = _fetch_authoritative(gateway, payment)
    if not authoritative.status:
        raise ReconciliationError("Unable to retrieve transaction status")
    _verify_transaction(payment, authoritative)

    if payment.status in _SETTLED:
        return ReconcileResult(
            payment_id=payment.id,
            outcome=Outcome.ALREADY_SETTLED,
            status=payment.status,
            authoritative_status=authoritative.status,
        )

    target = map_status(authoritative.status)
    if target is None:
        logger.warning(
            "webhook_unmapped_status",
            payment_id=payment.id,
            status=authoritative.status,
            transaction=authoritative.raw,
        )
        return ReconcileResult(
            payment_id=payment.id,
            outcome=Outcome.UNMAPPED_STATUS,
            status=payment.status,
            authoritative_status=authoritative.status,
        )

    previous = payment.status
    now = datetime.utcnow()
    values: dict[str, Any] = {"provider_response_json": authoritative.raw}
    if payment.provider_reference is None and authoritative.transaction_id is not None:
        values["provider_reference"] = authoritative.transaction_id
    if target is PaymentStatusV1.COMPLETED:
        values["completed_at"] = now

    if not transition_payment(db, payment, target, **values):
        # A concurrent delivery settled it first (or the stored state forbids this move).
        db.rollback()
        db.refresh(payment)
        return ReconcileResult(
            payment_id=payment.id,
            outcome=Outcome.ALREADY_SETTLED if payment.status in _SETTLED else Outcome.UNCHANGED,
            status=payment.status,
            authoritative_status=authoritative.status,
        )

    order = payment.order
    if target is PaymentStatusV1.COMPLETED:
        order.payment_status = OrderPaymentStatusV1.PAID.value
        order.paid_at = now
    elif target is PaymentStatusV1.FAILED:
        order.payment_status = OrderPaymentStatusV1.FAILED.value

    if target.value != previous:
        log_event(
            db,
            order_id=order.id,
            user_id=None,
            entity_type=EntityTypeV1.PAYMENT,
            entity_id=payment.id,
            event_type=EventTypeV1.PAYMENT_STATUS_CHANGED,
            event_payload={
                "from": previous,
                "to": target.value,
                "authoritative_status": authoritative.status,
                "claimed_status": payload.status,
            },
        )

    db.commit()

    outcome = Outcome.APPLIED if target.value != previous else Outcome.UNCHANGED
    logger.info(
        "webhook_reconciled",
        payment_id=payment.id,
        order_id=order.id,
        previous=previous,
        status=target.value,
        outcome=outcome.value,
    )
    return ReconcileResult(
        payment_id=payment.id,
        outcome=outcome,
        status=target.value,
        authoritative_status=authoritative.status,
    )
