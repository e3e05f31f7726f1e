from __future__ import annotations

from packages.shared.schemas.events import EventV1
from pydantic import BaseModel, Field


class OrderEventsOut(BaseModel):
    order_id: int
    order_number: str
    events: list[EventV1] = Field(default_factory=list)
