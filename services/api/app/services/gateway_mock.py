from __future__ import annotations

import threading
from uuid import uuid4

from packages.shared.schemas.status_v1 import MobileProviderV1
from services.api.app.services.gateway_base import (
    GatewayRequestError,
    InitiationResult,
    TransactionStatus,
)


class MockGateway:
    """Deterministic in-memory gateway for local dev and tests.

    Every initiated transaction starts PENDING and only changes when settle() is called,
    standing in for the customer approving (or rejecting) the USSD prompt.
    """

    name = "MOCK"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, dict] = {}
        self._id_by_reference: dict[str, str] = {}
        self.calls: list[dict] = []

    def get_access_token(self) -> str:
        return "mock-token"

    def initiate_payment(
        self,
        provider: MobileProviderV1,
        *,
        amount: int,
        reference: str,
        phone: str,
        callback_url: str,
    ) -> InitiationResult:
        transaction_id = f"mock_{uuid4().hex[:12]}"
        record = {
            "transaction_id": transaction_id,
            "reference": reference,
            "provider": provider.value,
            "amount": amount,
            "phone": phone,
            "callbackUrl": callback_url,
            "status": "PENDING",
        }
        with self._lock:
            self.calls.append({"method": "initiate_payment", **record})
            self._by_id[transaction_id] = record
            self._id_by_reference[reference] = transaction_id
        return InitiationResult(transaction_id=transaction_id, raw=dict(record))

    def get_status(
        self,
        *,
        transaction_id: str | None = None,
        reference: str | None = None,
    ) -> TransactionStatus:
        with self._lock:
            self.calls.append(
                {"method": "get_status", "transaction_id": transaction_id, "reference": reference}
            )
            if transaction_id is None and reference is not None:
                transaction_id = self._id_by_reference.get(reference)
            record = self._by_id.get(transaction_id or "")

        if record is None:
            raise GatewayRequestError(404, '{"message": "Transaction not found"}')
        return TransactionStatus(
            status=record["status"],
            transaction_id=record["transaction_id"],
            reference=record["reference"],
            amount=record["amount"],
            raw=dict(record),
        )

    def settle(self, reference: str, status: str) -> str:
        """Set the authoritative status of a transaction; returns its gateway id."""

        with self._lock:
            transaction_id = self._id_by_reference[reference]
            self._by_id[transaction_id]["status"] = status
        return transaction_id


_mock_gateway = MockGateway()


def get_mock_gateway() -> MockGateway:
    return _mock_gateway
