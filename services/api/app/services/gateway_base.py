from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from packages.shared.schemas.status_v1 import MobileProviderV1


class GatewayError(Exception):
    """Base class for payment gateway errors."""


class GatewayAuthError(GatewayError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Unable to get gateway access token: {detail}")
        self.detail = detail


class GatewayRequestError(GatewayError):
    def __init__(self, status_code: int | None, body: str, *, url: str = "") -> None:
        where = f" from {url}" if url else ""
        code = f"HTTP {status_code}" if status_code is not None else "no response"
        super().__init__(f"Gateway request failed with {code}{where}: {body}")
        self.status_code = status_code
        self.body = body
        self.url = url


class GatewayTimeoutError(GatewayRequestError):
    def __init__(self, url: str, timeout_seconds: float) -> None:
        super().__init__(None, f"timed out after {timeout_seconds}s", url=url)
        self.timeout_seconds = timeout_seconds


@dataclass(frozen=True, slots=True)
class InitiationResult:
    transaction_id: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TransactionStatus:
    status: str | None
    transaction_id: str | None
    reference: str | None = None
    amount: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    name: str

    def get_access_token(self) -> str: ...

    def initiate_payment(
        self,
        provider: MobileProviderV1,
        *,
        amount: int,
        reference: str,
        phone: str,
        callback_url: str,
    ) -> InitiationResult: ...

    def get_status(
        self,
        *,
        transaction_id: str | None = None,
        reference: str | None = None,
    ) -> TransactionStatus: ...
