from __future__ import annotations

import json
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from packages.shared.schemas.status_v1 import MobileProviderV1
from services.api.app.services.gateway_base import (
    GatewayAuthError,
    GatewayRequestError,
    GatewayTimeoutError,
    InitiationResult,
    TransactionStatus,
)
from services.api.app.services.token_cache import TokenCache
from services.api.app.utils.logging import get_logger

logger = get_logger(__name__)

# USSD push endpoint per carrier. Status queries share one endpoint.
_INITIATION_PATHS: dict[MobileProviderV1, str] = {
    MobileProviderV1.AIRTEL: "/74/paiement",
    MobileProviderV1.MOOV: "/62/paiement",
}

_TOKEN_CACHE_KEY = "singpay"

# Process-wide so every client built from env shares one token.
_shared_token_cache = TokenCache()


@dataclass(frozen=True, slots=True)
class _SingPayConfig:
    api_url: str
    token_url: str
    client_id: str
    client_secret: str
    timeout_seconds: float


class SingPayClient:
    """SingPay mobile-money gateway (Airtel Money and Moov Money).

    No call is retried here; callers own retry policy.

    Env vars:
    - MARCHE_GATEWAY=singpay
    - SINGPAY_API_URL (e.g. https://gateway.singpay.ga/v1)
    - SINGPAY_TOKEN_URL
    - SINGPAY_CLIENT_ID / SINGPAY_CLIENT_SECRET
    - SINGPAY_TIMEOUT_SECONDS (default: 30)
    - SINGPAY_TOKEN_TTL_SECONDS (default: 3500)
    """

    name = "SINGPAY"

    def __init__(self, cfg: _SingPayConfig, *, token_cache: TokenCache | None = None) -> None:
        self._cfg = cfg
        self._tokens = token_cache or _shared_token_cache

    @classmethod
    def from_env(cls) -> SingPayClient:
        missing = [
            name
            for name in (
                "SINGPAY_API_URL",
                "SINGPAY_TOKEN_URL",
                "SINGPAY_CLIENT_ID",
                "SINGPAY_CLIENT_SECRET",
            )
            if not os.getenv(name, "").strip()
        ]
        if missing:
            raise ValueError(f"Missing SingPay configuration: {', '.join(missing)}")

        cfg = _SingPayConfig(
            api_url=os.environ["SINGPAY_API_URL"].strip().rstrip("/"),
            token_url=os.environ["SINGPAY_TOKEN_URL"].strip(),
            client_id=os.environ["SINGPAY_CLIENT_ID"].strip(),
            client_secret=os.environ["SINGPAY_CLIENT_SECRET"].strip(),
            timeout_seconds=float(os.getenv("SINGPAY_TIMEOUT_SECONDS", "30")),
        )

        ttl = float(os.getenv("SINGPAY_TOKEN_TTL_SECONDS", "3500"))
        token_cache = _shared_token_cache if ttl == 3500 else TokenCache(max_ttl_seconds=ttl)
        return cls(cfg, token_cache=token_cache)

    def get_access_token(self) -> str:
        return self._tokens.get_or_fetch(_TOKEN_CACHE_KEY, self._fetch_token)

    def _fetch_token(self) -> tuple[str, float | None]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self._cfg.client_id,
            "client_secret": self._cfg.client_secret,
        }
        try:
            payload = _http_json(
                "POST",
                self._cfg.token_url,
                form=form,
                timeout=self._cfg.timeout_seconds,
            )
        except GatewayRequestError as e:
            logger.error("gateway_token_failed", status_code=e.status_code, body=e.body)
            raise GatewayAuthError(e.body) from e

        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise GatewayAuthError(f"token response has no access_token: {payload!r}")

        expires_in = payload.get("expires_in")
        try:
            expires = float(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires = None

        logger.debug("gateway_token_refreshed", expires_in=expires)
        return token, expires

    def initiate_payment(
        self,
        provider: MobileProviderV1,
        *,
        amount: int,
        reference: str,
        phone: str,
        callback_url: str,
    ) -> InitiationResult:
        path = _INITIATION_PATHS.get(provider)
        if path is None:
            raise ValueError(f"Provider not supported: {provider}")

        payload = self._authorized(
            "POST",
            f"{self._cfg.api_url}{path}",
            body={
                "amount": amount,
                "reference": reference,
                "phone": phone,
                "callbackUrl": callback_url,
            },
        )

        transaction_id = _first_str(payload, "transaction_id", "transactionId", "id")
        return InitiationResult(transaction_id=transaction_id, raw=payload)

    def get_status(
        self,
        *,
        transaction_id: str | None = None,
        reference: str | None = None,
    ) -> TransactionStatus:
        if transaction_id:
            url = f"{self._cfg.api_url}/transaction/api/status/{urllib.parse.quote(transaction_id)}"
        elif reference:
            url = (
                f"{self._cfg.api_url}/transaction/api/search/by-reference/"
                f"{urllib.parse.quote(reference)}"
            )
        else:
            raise ValueError("transaction_id or reference is required")

        payload = self._authorized("GET", url)
        return TransactionStatus(
            status=_first_str(payload, "status"),
            transaction_id=_first_str(payload, "transaction_id", "transactionId", "id"),
            reference=_first_str(payload, "reference"),
            amount=_first_int(payload, "amount"),
            raw=payload,
        )

    def _authorized(self, method: str, url: str, *, body: dict | None = None) -> dict[str, Any]:
        token = self.get_access_token()
        try:
            return _http_json(
                method,
                url,
                body=body,
                bearer=token,
                timeout=self._cfg.timeout_seconds,
            )
        except GatewayRequestError as e:
            if e.status_code == 401:
                # Next call fetches a fresh token; this one still fails.
                self._tokens.invalidate(_TOKEN_CACHE_KEY)
            logger.warning(
                "gateway_request_failed",
                method=method,
                url=url,
                status_code=e.status_code,
                body=e.body,
            )
            raise


def _first_str(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is None or value == "":
            continue
        return str(value)
    return None


def _first_int(payload: dict[str, Any], *keys: str) -> int | None:
    value = _first_str(payload, *keys)
    if value is None:
        return None
    try:
        return int(float(value))
    except (OverflowError, ValueError):
        return None


def _http_json(
    method: str,
    url: str,
    *,
    body: dict | None = None,
    form: dict[str, str] | None = None,
    bearer: str | None = None,
    timeout: float,
) -> dict[str, Any]:
    data: bytes | None = None
    req = urllib.request.Request(url, method=method)
    req.add_header("Accept", "application/json")
    if bearer:
        req.add_header("Authorization", f"Bearer {bearer}")
    if form is not None:
        req.add_header("Content-Type", "application/x-www-form-urlencoded")
        data = urllib.parse.urlencode(form).encode("utf-8")
    elif body is not None:
        req.add_header("Content-Type", "application/json")
        data = json.dumps(body).encode("utf-8")

    try:
        with urllib.request.urlopen(req, data=data, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")
        raise GatewayRequestError(e.code, detail, url=url) from e
    except TimeoutError as e:
        raise GatewayTimeoutError(url, timeout) from e
    except urllib.error.URLError as e:
        if isinstance(e.reason, TimeoutError):
            raise GatewayTimeoutError(url, timeout) from e
        raise GatewayRequestError(None, str(e.reason), url=url) from e

    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise GatewayRequestError(200, f"non-JSON response: {raw[:500]}", url=url) from e
    if not isinstance(payload, dict):
        raise GatewayRequestError(200, f"unexpected response shape: {raw[:500]}", url=url)
    return payload
