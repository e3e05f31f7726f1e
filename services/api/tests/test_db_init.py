from pathlib import Path

from sqlalchemy import inspect


def test_init_db_creates_tables(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "marche_init.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("MARCHE_DB_AUTO_CREATE", "true")

    from services.api.app.db.database import get_engine
    from services.api.app.db.init_db import init_db

    init_db()

    inspector = inspect(get_engine())
    tables = set(inspector.get_table_names())

    assert {"users", "products", "carts", "cart_items", "orders", "order_items"} <= tables
    assert "payments" in tables
    assert "event_log" in tables

    payment_uniques = {
        tuple(ix["column_names"]) for ix in inspector.get_indexes("payments") if ix["unique"]
    }
    payment_uniques |= {
        tuple(uc["column_names"]) for uc in inspector.get_unique_constraints("payments")
    }
    assert ("order_id",) in payment_uniques


def test_init_db_respects_auto_create_flag(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "marche_noinit.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("MARCHE_DB_AUTO_CREATE", "false")

    from services.api.app.db.database import get_engine
    from services.api.app.db.init_db import init_db

    init_db()

    assert inspect(get_engine()).get_table_names() == []
