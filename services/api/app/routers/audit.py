from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EventV1
from services.api.app.db.deps import get_current_user, get_db
from services.api.app.db.models import User
from services.api.app.models.audit import OrderEventsOut
from services.api.app.models.common import ApiResponse
from services.api.app.services import orders as order_service
from services.api.app.services.orders import OrderNotFoundError
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/orders/{order_id}/events", response_model=ApiResponse[OrderEventsOut])
def list_order_events(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderEventsOut]:
    try:
        order = order_service.get_order(db, user.id, order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    rows = order_service.list_order_events(db, order)
    events = [
        EventV1(
            id=r.id,
            order_id=r.order_id,
            user_id=r.user_id,
            entity_type=r.entity_type,
            entity_id=r.entity_id,
            event_type=r.event_type,
            payload=r.event_payload_json,
            created_at=r.created_at.isoformat(),
        )
        for r in rows
    ]

    return ApiResponse(
        message="Order events",
        data=OrderEventsOut(order_id=order.id, order_number=order.order_number, events=events),
    )
