from __future__ import annotations

from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.models import EventLog
from sqlalchemy.orm import Session


def log_event(
    db: Session,
    *,
    order_id: int,
    user_id: str | None,
    entity_type: EntityTypeV1,
    entity_id: str | int,
    event_type: EventTypeV1,
    event_payload: dict,
) -> None:
    """Append an audit row. Written in the caller's transaction so it commits or rolls back
    together with the state change it describes."""

    db.add(
        EventLog(
            id=uuid4().hex,
            order_id=order_id,
            user_id=user_id,
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            event_type=event_type.value,
            event_payload_json=event_payload,
        )
    )
