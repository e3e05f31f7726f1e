from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

CHECKOUT_PAYLOAD = {
    "shipping_address": "Quartier Louis, rue 12",
    "shipping_city": "Libreville",
    "shipping_country": "Gabon",
    "phone": "+24177123456",
    "payment_method": "mobile_money",
}


@pytest.fixture()
def checkout_payload() -> dict[str, Any]:
    return dict(CHECKOUT_PAYLOAD)


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "marche_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("MARCHE_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("MARCHE_GATEWAY", "mock")
    monkeypatch.setenv("MARCHE_NOTIFIER", "log")
    monkeypatch.delenv("MARCHE_WEBHOOK_BASE_URL", raising=False)

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def db(client: TestClient):
    from services.api.app.db.database import db_session

    session = db_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gateway():
    from services.api.app.services.gateway_mock import get_mock_gateway

    return get_mock_gateway()


@pytest.fixture()
def make_user(db) -> Callable[..., str]:
    from services.api.app.db.models import User

    def _make(user_id: str = "u-1", role: str = "customer") -> str:
        db.add(User(id=user_id, display_name=user_id, role=role))
        db.commit()
        return user_id

    return _make


@pytest.fixture()
def make_product(db) -> Callable[..., int]:
    from services.api.app.db.models import Product

    def _make(
        name: str = "Pagne wax",
        *,
        price: int = 10000,
        stock: int = 5,
        discount_price: int | None = None,
        shipping_cost: int | None = None,
    ) -> int:
        product = Product(
            name=name,
            price=price,
            stock=stock,
            discount_price=discount_price,
            shipping_cost=shipping_cost,
        )
        db.add(product)
        db.commit()
        return product.id

    return _make


@pytest.fixture()
def stock_of(client: TestClient) -> Callable[[int], int]:
    """Read a product's stock through a fresh session."""

    from services.api.app.db.database import db_session
    from services.api.app.db.models import Product

    def _read(product_id: int) -> int:
        session = db_session()
        try:
            return session.get(Product, product_id).stock
        finally:
            session.close()

    return _read


@pytest.fixture()
def place_order(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Fill the user's cart with (product_id, quantity) lines and check out."""

    def _place(user_id: str, lines: list[tuple[int, int]], **overrides: Any) -> dict[str, Any]:
        headers = {"X-User-Id": user_id}
        for product_id, quantity in lines:
            r = client.post(
                "/v1/cart/items",
                json={"product_id": product_id, "quantity": quantity},
                headers=headers,
            )
            assert r.status_code == 200, r.text
        r = client.post("/v1/orders", json={**CHECKOUT_PAYLOAD, **overrides}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _place


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    def notify(self, user_id: str, event: str, payload: dict) -> None:
        self.sent.append((user_id, event, payload))


@pytest.fixture()
def notifier(monkeypatch: pytest.MonkeyPatch) -> RecordingNotifier:
    recorder = RecordingNotifier()
    for module in (
        "services.api.app.routers.order",
        "services.api.app.routers.payment",
        "services.api.app.routers.webhook",
    ):
        monkeypatch.setattr(f"{module}.get_notifier", lambda: recorder)
    return recorder
