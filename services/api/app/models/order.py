from __future__ import annotations

import re
from datetime import datetime

from packages.shared.schemas.status_v1 import PaymentMethodV1
from pydantic import BaseModel, ConfigDict, Field, field_validator
from services.api.app.models.payment import PaymentOut
from services.api.app.services.pricing import SERVICEABLE_CITIES

# Gabonese mobile numbers: optional +241 / 00241 prefix, then 8 or 9 digits.
PHONE_PATTERN = re.compile(r"^(\+241|00241)?[0-9]{8,9}$")


class CheckoutRequest(BaseModel):
    shipping_address: str = Field(..., min_length=1)
    shipping_city: str
    shipping_postal_code: str | None = None
    shipping_country: str = Field(..., min_length=1)
    phone: str
    delivery_instructions: str | None = None
    payment_method: PaymentMethodV1

    @field_validator("shipping_city")
    @classmethod
    def _city_is_serviceable(cls, value: str) -> str:
        if value not in SERVICEABLE_CITIES:
            raise ValueError("This city is not in our delivery area")
        return value

    @field_validator("phone")
    @classmethod
    def _phone_is_local_mobile(cls, value: str) -> str:
        if not PHONE_PATTERN.match(value):
            raise ValueError(
                "Invalid phone number format (e.g. +24177123456 or 07123456)"
            )
        return value


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    quantity: int
    price: int
    subtotal: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: str

    subtotal: int
    shipping_cost: int
    total_amount: int

    status: str
    payment_status: str
    payment_method: str

    shipping_address: str
    shipping_city: str
    shipping_postal_code: str | None = None
    shipping_country: str
    phone: str
    delivery_instructions: str | None = None
    cancellation_reason: str | None = None

    created_at: datetime
    confirmed_at: datetime | None = None
    processing_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None

    items: list[OrderItemOut] = Field(default_factory=list)
    payment: PaymentOut | None = None


class TimelineStep(BaseModel):
    status: str
    label: str
    completed: bool
    date: datetime | None = None


class OrderTracking(BaseModel):
    order: OrderOut
    timeline: list[TimelineStep]
