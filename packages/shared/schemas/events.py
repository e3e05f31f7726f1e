"""Shared event schema (v1).

The backend stores an append-only event log next to every order and payment state
change. Clients can consume these events to render an order history.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    ORDER = "Order"
    PAYMENT = "Payment"


class EventTypeV1(str, Enum):
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_STATUS_CHANGED = "PAYMENT_STATUS_CHANGED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"


class EventV1(BaseModel):
    id: str
    order_id: int
    user_id: str | None = None

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
