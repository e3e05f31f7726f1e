from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.status_v1 import CURRENCY
from services.api.app.db.deps import get_current_user, get_db
from services.api.app.db.models import User
from services.api.app.models.cart import CartItemAddRequest, CartOut, CartValidation
from services.api.app.models.common import ApiResponse
from services.api.app.services import cart as cart_service
from services.api.app.services.cart import CartItemNotFoundError
from services.api.app.services.inventory import InsufficientStockError, UnknownProductError
from services.api.app.utils.logging import get_logger
from sqlalchemy.orm import Session

router = APIRouter()
logger = get_logger(__name__)


def _raise_cart_http_error(e: Exception, fallback: str) -> None:
    if isinstance(e, (UnknownProductError, CartItemNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, InsufficientStockError):
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "errors": {"quantity": [str(e)]}},
        ) from e

    logger.error("cart_request_failed", error=str(e), exc_info=e)
    raise HTTPException(status_code=500, detail=fallback) from e


@router.get("/v1/cart", response_model=ApiResponse[CartOut])
def get_cart(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[CartOut]:
    cart = cart_service.get_or_create_cart(db, user.id)
    return ApiResponse(
        message="Cart",
        data=CartOut(**cart_service.describe_cart(cart)),
        currency=CURRENCY,
    )


@router.post("/v1/cart/items", response_model=ApiResponse[CartOut])
def add_cart_item(
    payload: CartItemAddRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[CartOut]:
    try:
        cart = cart_service.add_item(db, user.id, payload.product_id, payload.quantity)
    except Exception as e:
        _raise_cart_http_error(e, "Could not add item to cart")

    return ApiResponse(
        message="Item added to cart",
        data=CartOut(**cart_service.describe_cart(cart)),
        currency=CURRENCY,
    )


@router.delete("/v1/cart/items/{item_id}", response_model=ApiResponse[CartOut])
def remove_cart_item(
    item_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[CartOut]:
    try:
        cart = cart_service.remove_item(db, user.id, item_id)
    except Exception as e:
        _raise_cart_http_error(e, "Could not remove item from cart")

    return ApiResponse(
        message="Item removed from cart",
        data=CartOut(**cart_service.describe_cart(cart)),
        currency=CURRENCY,
    )


@router.post("/v1/cart/validate", response_model=ApiResponse[CartValidation])
def validate_cart(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[CartValidation]:
    issues = cart_service.validate_snapshot(cart_service.load_cart_snapshot(db, user.id))
    valid = not issues
    return ApiResponse(
        success=valid,
        message="Cart is valid" if valid else "Some items in your cart are no longer available",
        data=CartValidation(valid=valid, issues=issues),
    )
