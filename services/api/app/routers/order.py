from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.status_v1 import CURRENCY
from services.api.app.db.deps import get_current_user, get_db
from services.api.app.db.models import Order, User
from services.api.app.models.common import ApiResponse
from services.api.app.models.order import (
    CancelOrderRequest,
    CheckoutRequest,
    OrderOut,
    OrderTracking,
    TimelineStep,
)
from services.api.app.services import orders as order_service
from services.api.app.services.checkout import EmptyCartError, place_order
from services.api.app.services.inventory import InsufficientStockError
from services.api.app.services.notifications import get_notifier, notify_safely
from services.api.app.services.orders import (
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderNotShippedError,
)
from services.api.app.services.transitions import InvalidTransitionError
from services.api.app.utils.logging import get_logger
from sqlalchemy.orm import Session

router = APIRouter()
logger = get_logger(__name__)


def _raise_order_http_error(e: Exception, fallback: str) -> None:
    if isinstance(e, EmptyCartError):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, InsufficientStockError):
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "errors": {
                    "cart": [str(e)],
                },
                "data": {
                    "product_id": e.product_id,
                    "product_name": e.product_name,
                    "available": e.available,
                    "requested": e.requested,
                },
            },
        ) from e

    if isinstance(e, OrderNotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, (OrderNotCancellableError, OrderNotShippedError)):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, InvalidTransitionError):
        raise HTTPException(status_code=409, detail=str(e)) from e

    logger.error("order_request_failed", error=str(e), exc_info=e)
    raise HTTPException(status_code=500, detail=fallback) from e


def _order_out(order: Order) -> OrderOut:
    return OrderOut.model_validate(order)


@router.post("/v1/orders", status_code=201, response_model=ApiResponse[OrderOut])
def create_order(
    payload: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderOut]:
    try:
        order = place_order(db, user.id, payload)
    except Exception as e:
        _raise_order_http_error(e, "Order creation failed")

    notify_safely(
        get_notifier(),
        user.id,
        "order_placed",
        {"order_id": order.id, "order_number": order.order_number},
    )

    return ApiResponse(
        message="Order created successfully. Proceed to payment.",
        data=_order_out(order),
        currency=CURRENCY,
    )


@router.get("/v1/orders", response_model=ApiResponse[list[OrderOut]])
def list_orders(
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[list[OrderOut]]:
    rows = order_service.list_orders(db, user.id, status=status)
    return ApiResponse(
        message="Order history",
        data=[_order_out(o) for o in rows],
        currency=CURRENCY,
    )


@router.get("/v1/orders/track/{order_number}", response_model=ApiResponse[OrderTracking])
def track_order(
    order_number: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderTracking]:
    try:
        order = order_service.get_order_by_number(db, user.id, order_number)
    except Exception as e:
        _raise_order_http_error(e, "Order tracking failed")

    return ApiResponse(
        message="Order tracking",
        data=OrderTracking(
            order=_order_out(order),
            timeline=[TimelineStep(**step) for step in order_service.build_timeline(order)],
        ),
        currency=CURRENCY,
    )


@router.get("/v1/orders/{order_id}", response_model=ApiResponse[OrderOut])
def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderOut]:
    try:
        order = order_service.get_order(db, user.id, order_id)
    except Exception as e:
        _raise_order_http_error(e, "Order lookup failed")

    return ApiResponse(message="Order details", data=_order_out(order), currency=CURRENCY)


@router.post("/v1/orders/{order_id}/cancel", response_model=ApiResponse[OrderOut])
def cancel_order(
    order_id: int,
    payload: CancelOrderRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderOut]:
    try:
        order = order_service.cancel_order(
            db, user.id, order_id, payload.reason if payload else None
        )
    except Exception as e:
        _raise_order_http_error(e, "Order cancellation failed")

    notify_safely(get_notifier(), user.id, "order_cancelled", {"order_id": order.id})
    return ApiResponse(message="Order cancelled", data=_order_out(order), currency=CURRENCY)


@router.post("/v1/orders/{order_id}/confirm-delivery", response_model=ApiResponse[OrderOut])
def confirm_delivery(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderOut]:
    try:
        order = order_service.confirm_delivery(db, user.id, order_id)
    except Exception as e:
        _raise_order_http_error(e, "Delivery confirmation failed")

    return ApiResponse(
        message="Delivery confirmed. Thank you for your order!",
        data=_order_out(order),
        currency=CURRENCY,
    )
