from __future__ import annotations

import os

from services.api.app.services.gateway_base import PaymentGateway
from services.api.app.services.gateway_mock import get_mock_gateway


def get_payment_gateway() -> PaymentGateway:
    """Select the payment gateway based on env vars.

    Defaults to the in-memory mock so tests and local dev never reach a real provider
    unless explicitly configured otherwise.
    """

    mode = os.getenv("MARCHE_GATEWAY", "mock").strip().lower()

    if mode == "mock":
        return get_mock_gateway()

    if mode == "singpay":
        from services.api.app.services.singpay import SingPayClient

        return SingPayClient.from_env()

    raise ValueError(f"Unknown MARCHE_GATEWAY={mode!r}. Expected mock or singpay.")
