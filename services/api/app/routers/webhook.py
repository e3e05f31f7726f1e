"""Public gateway callback endpoint.

No authentication: the body is treated as untrusted and only used to locate the payment.
The status actually applied always comes from the gateway's own status endpoint.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from packages.shared.schemas.status_v1 import PaymentStatusV1
from services.api.app.db.database import db_session
from services.api.app.db.models import Payment
from services.api.app.models.payment import WebhookAck
from services.api.app.services.gateway_base import PaymentGateway
from services.api.app.services.gateway_factory import get_payment_gateway
from services.api.app.services.notifications import get_notifier, notify_safely
from services.api.app.services.reconciler import (
    MalformedWebhookError,
    Outcome,
    ReconcileResult,
    ReconciliationError,
    TransactionMismatchError,
    UnknownPaymentError,
    reconcile,
)
from services.api.app.utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)

_NOTIFY_ON = {
    PaymentStatusV1.COMPLETED.value: "payment_completed",
    PaymentStatusV1.FAILED.value: "payment_failed",
}


def _ack(status_code: int, success: bool, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=WebhookAck(success=success, message=message).model_dump(),
    )


def _process(gateway: PaymentGateway, raw: object) -> tuple[ReconcileResult, str | None, int]:
    db = db_session()
    try:
        result = reconcile(db, gateway, raw)
        payment = db.get(Payment, result.payment_id)
        return result, payment.order.user_id, payment.order_id
    finally:
        db.close()


@router.post("/webhooks/{provider}", name="gateway_webhook")
async def gateway_webhook(provider: str, request: Request) -> JSONResponse:
    try:
        gateway = get_payment_gateway()
    except ValueError:
        logger.error("webhook_gateway_misconfigured", provider=provider, exc_info=True)
        return _ack(500, False, "Payment gateway unavailable")

    if provider.lower() != gateway.name.lower():
        logger.warning("webhook_unknown_provider", provider=provider)
        return _ack(400, False, "Unknown payment provider")

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _ack(400, False, "Invalid callback payload")

    try:
        result, user_id, order_id = await run_in_threadpool(_process, gateway, raw)
    except (MalformedWebhookError, TransactionMismatchError) as e:
        return _ack(400, False, str(e))
    except UnknownPaymentError as e:
        return _ack(404, False, str(e))
    except ReconciliationError:
        return _ack(500, False, "Callback processing failed")
    except Exception:
        logger.error("webhook_processing_failed", provider=provider, exc_info=True)
        return _ack(500, False, "Callback processing failed")

    event = _NOTIFY_ON.get(result.status)
    if result.outcome is Outcome.APPLIED and event is not None and user_id is not None:
        notify_safely(
            get_notifier(),
            user_id,
            event,
            {"order_id": order_id, "payment_id": result.payment_id},
        )

    return _ack(200, True, "Callback processed")
