from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException, Request
from packages.shared.schemas.status_v1 import CURRENCY
from services.api.app.db.deps import get_current_user, get_db
from services.api.app.db.models import User
from services.api.app.models.common import ApiResponse
from services.api.app.models.payment import (
    PaymentInitiationOut,
    PaymentInitiationRequest,
    PaymentOut,
    RefundRequest,
)
from services.api.app.services import payments as payment_service
from services.api.app.services.gateway_factory import get_payment_gateway
from services.api.app.services.notifications import get_notifier, notify_safely
from services.api.app.services.payments import (
    DuplicatePaymentError,
    OrderNotPayableError,
    PaymentInitiationError,
    PaymentNotFoundError,
    RefundNotAllowedError,
)
from services.api.app.utils.logging import get_logger
from sqlalchemy.orm import Session

router = APIRouter()
logger = get_logger(__name__)


def _raise_payment_http_error(e: Exception, fallback: str) -> None:
    if isinstance(e, (OrderNotPayableError, PaymentNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, (DuplicatePaymentError, RefundNotAllowedError)):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, PaymentInitiationError):
        raise HTTPException(
            status_code=500,
            detail={"message": "Payment initiation failed", "errors": {"gateway": [e.detail]}},
        ) from e

    logger.error("payment_request_failed", error=str(e), exc_info=e)
    raise HTTPException(status_code=500, detail=fallback) from e


def callback_url_for(request: Request, gateway_name: str) -> str:
    provider = gateway_name.lower()
    base = os.getenv("MARCHE_WEBHOOK_BASE_URL", "").strip().rstrip("/")
    if base:
        return f"{base}/webhooks/{provider}"
    return str(request.url_for("gateway_webhook", provider=provider))


@router.post("/v1/payments/orders/{order_id}", response_model=ApiResponse[PaymentInitiationOut])
def initiate_payment(
    order_id: int,
    payload: PaymentInitiationRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[PaymentInitiationOut]:
    try:
        gateway = get_payment_gateway()
        initiated = payment_service.initiate_payment(
            db,
            gateway,
            user_id=user.id,
            order_id=order_id,
            provider=payload.provider,
            phone=payload.phone,
            callback_url=callback_url_for(request, gateway.name),
        )
    except Exception as e:
        _raise_payment_http_error(e, "Payment initiation failed")

    return ApiResponse(
        message="Payment initiated. Please confirm on your phone.",
        data=PaymentInitiationOut(
            payment=PaymentOut.model_validate(initiated.payment),
            gateway_response=initiated.gateway_response,
        ),
        currency=CURRENCY,
    )


@router.get("/v1/payments/orders/{order_id}/status", response_model=ApiResponse[PaymentOut])
def get_payment_status(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[PaymentOut]:
    try:
        payment = payment_service.get_order_payment(db, user_id=user.id, order_id=order_id)
    except Exception as e:
        _raise_payment_http_error(e, "Payment lookup failed")

    return ApiResponse(
        message="Payment status",
        data=PaymentOut.model_validate(payment),
        currency=CURRENCY,
    )


@router.post("/v1/payments/{payment_id}/refund", response_model=ApiResponse[PaymentOut])
def refund_payment(
    payment_id: int,
    payload: RefundRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[PaymentOut]:
    try:
        payment = payment_service.refund_payment(
            db,
            payment_id=payment_id,
            actor=user,
            reason=payload.reason if payload else None,
        )
    except Exception as e:
        _raise_payment_http_error(e, "Refund failed")

    notify_safely(
        get_notifier(),
        payment.order.user_id,
        "payment_refunded",
        {"order_id": payment.order_id, "refund_amount": payment.refund_amount},
    )
    return ApiResponse(
        message="Payment refunded",
        data=PaymentOut.model_validate(payment),
        currency=CURRENCY,
    )
