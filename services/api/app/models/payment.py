from __future__ import annotations

from datetime import datetime
from typing import Any

from packages.shared.schemas.status_v1 import MobileProviderV1
from pydantic import BaseModel, ConfigDict, Field


class PaymentInitiationRequest(BaseModel):
    provider: MobileProviderV1
    phone: str = Field(..., min_length=8, max_length=15)


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    payment_method: str
    provider: str
    phone: str
    amount: int

    reference: str
    provider_reference: str | None = None
    status: str

    refund_amount: int | None = None
    refund_reason: str | None = None

    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    refunded_at: datetime | None = None


class PaymentInitiationOut(BaseModel):
    payment: PaymentOut
    gateway_response: dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    success: bool
    message: str
