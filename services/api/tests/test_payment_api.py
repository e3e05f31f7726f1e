from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from services.api.app.services.gateway_base import GatewayRequestError, GatewayTimeoutError
from services.api.app.services.gateway_mock import MockGateway


def _initiate(client: TestClient, user: str, order_id: int, provider: str = "AIRTEL"):
    return client.post(
        f"/v1/payments/orders/{order_id}",
        json={"provider": provider, "phone": "077123456"},
        headers={"X-User-Id": user},
    )


def _payment_count() -> int:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import Payment
    from sqlalchemy import func, select

    session = db_session()
    try:
        return session.execute(select(func.count()).select_from(Payment)).scalar_one()
    finally:
        session.close()


class _FailingGateway(MockGateway):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def initiate_payment(self, provider, **kwargs):
        raise self.error


def test_initiation_creates_pending_payment_for_order_total(
    client: TestClient, make_user, make_product, place_order, gateway
) -> None:
    user = make_user()
    pid = make_product(price=1000, stock=5)
    order = place_order(user, [(pid, 2)])
    assert order["total_amount"] == 4000

    r = _initiate(client, user, order["id"])
    assert r.status_code == 200, r.text

    body = r.json()
    assert body["currency"] == "FCFA"
    payment = body["data"]["payment"]
    assert payment["status"] == "pending"
    assert payment["amount"] == 4000
    assert payment["provider"] == "AIRTEL"
    assert payment["reference"].startswith("SP-")
    assert payment["provider_reference"].startswith("mock_")
    assert body["data"]["gateway_response"]["status"] == "PENDING"

    sent = [c for c in gateway.calls if c.get("reference") == payment["reference"]]
    assert sent[0]["method"] == "initiate_payment"
    assert sent[0]["amount"] == 4000
    assert sent[0]["callbackUrl"].endswith("/webhooks/mock")


def test_references_are_unique_per_payment(
    client: TestClient, make_user, make_product, place_order
) -> None:
    user = make_user()
    pid = make_product(stock=10)
    refs = set()
    for _ in range(3):
        order = place_order(user, [(pid, 1)])
        refs.add(_initiate(client, user, order["id"]).json()["data"]["payment"]["reference"])
    assert len(refs) == 3


def test_callback_url_uses_configured_public_base(
    client: TestClient, make_user, make_product, place_order, gateway, monkeypatch
) -> None:
    monkeypatch.setenv("MARCHE_WEBHOOK_BASE_URL", "https://api.marche.ga/")
    user = make_user()
    order = place_order(user, [(make_product(), 1)])

    reference = _initiate(client, user, order["id"]).json()["data"]["payment"]["reference"]

    sent = next(c for c in gateway.calls if c.get("reference") == reference)
    assert sent["callbackUrl"] == "https://api.marche.ga/webhooks/mock"


def test_second_initiation_is_rejected(
    client: TestClient, make_user, make_product, place_order
) -> None:
    user = make_user()
    order = place_order(user, [(make_product(), 1)])
    assert _initiate(client, user, order["id"]).status_code == 200

    r = _initiate(client, user, order["id"], provider="MOOV")

    assert r.status_code == 422
    assert r.json()["message"] == "Payment already initiated for this order"
    assert _payment_count() == 1


def test_initiation_for_someone_elses_or_missing_order_is_404(
    client: TestClient, make_user, make_product, place_order
) -> None:
    owner = make_user("u-owner")
    other = make_user("u-other")
    order = place_order(owner, [(make_product(), 1)])

    assert _initiate(client, other, order["id"]).status_code == 404
    r = _initiate(client, owner, 424242)
    assert r.status_code == 404
    assert r.json()["message"] == "Order not found or already paid"


def test_unknown_provider_is_validation_error(
    client: TestClient, make_user, make_product, place_order
) -> None:
    user = make_user()
    order = place_order(user, [(make_product(), 1)])

    r = _initiate(client, user, order["id"], provider="ORANGE")

    assert r.status_code == 422
    assert "provider" in r.json()["errors"]


@pytest.mark.parametrize(
    "error",
    [
        GatewayRequestError(502, '{"message":"upstream down"}'),
        GatewayTimeoutError("https://gateway.test/74/paiement", 30),
    ],
)
def test_gateway_failure_leaves_no_payment_and_allows_retry(
    client: TestClient, make_user, make_product, place_order, monkeypatch, error
) -> None:
    from services.api.app.routers import payment as payment_router

    user = make_user()
    order = place_order(user, [(make_product(), 1)])
    monkeypatch.setattr(payment_router, "get_payment_gateway", lambda: _FailingGateway(error))

    r = _initiate(client, user, order["id"])

    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Payment initiation failed"
    assert body["errors"]["gateway"]
    assert _payment_count() == 0

    monkeypatch.setattr(payment_router, "get_payment_gateway", lambda: MockGateway())
    assert _initiate(client, user, order["id"]).status_code == 200
    assert _payment_count() == 1


def test_misconfigured_gateway_is_generic_500(
    client: TestClient, make_user, make_product, place_order, monkeypatch
) -> None:
    monkeypatch.setenv("MARCHE_GATEWAY", "paypal")
    user = make_user()
    order = place_order(user, [(make_product(), 1)])

    r = _initiate(client, user, order["id"])

    assert r.status_code == 500
    assert r.json()["message"] == "Payment initiation failed"
    assert "paypal" not in r.text


def test_payment_status_endpoint(
    client: TestClient, make_user, make_product, place_order
) -> None:
    user = make_user()
    order = place_order(user, [(make_product(), 1)])
    headers = {"X-User-Id": user}

    missing = client.get(f"/v1/payments/orders/{order['id']}/status", headers=headers)
    assert missing.status_code == 404

    reference = _initiate(client, user, order["id"]).json()["data"]["payment"]["reference"]
    r = client.get(f"/v1/payments/orders/{order['id']}/status", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["reference"] == reference
    assert r.json()["data"]["status"] == "pending"


def test_concurrent_initiation_loses_on_unique_order_payment(
    client: TestClient, make_user, make_product, place_order, monkeypatch
) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import Payment
    from services.api.app.services import payments

    user = make_user()
    order = place_order(user, [(make_product(), 1)])
    real_reference = payments.generate_reference

    def reference_after_competing_insert() -> str:
        # Runs after the existence check; another request commits its Payment first.
        other = db_session()
        try:
            other.add(
                Payment(
                    order_id=order["id"],
                    payment_method="mobile_money",
                    provider="AIRTEL",
                    phone="077000000",
                    amount=order["total_amount"],
                    reference=real_reference(),
                    status="pending",
                )
            )
            other.commit()
        finally:
            other.close()
        return real_reference()

    monkeypatch.setattr(payments, "generate_reference", reference_after_competing_insert)

    r = _initiate(client, user, order["id"], provider="MOOV")

    assert r.status_code == 422
    assert r.json()["message"] == "Payment already initiated for this order"
    assert _payment_count() == 1
