from __future__ import annotations

import os

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None
_SESSIONMAKER: sessionmaker | None = None


def _default_db_url() -> str:
    # Local-only default. Production must provide DATABASE_URL explicitly.
    return "sqlite+pysqlite:///.local/marche.db"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Return a cached SQLAlchemy engine.

    We cache based on DATABASE_URL so tests can override DATABASE_URL before first use.
    """

    global _ENGINE, _ENGINE_URL, _SESSIONMAKER

    url = os.getenv("DATABASE_URL", _default_db_url())

    if _ENGINE is not None and _ENGINE_URL == url:
        return _ENGINE

    if _ENGINE is not None:
        _ENGINE.dispose()

    is_sqlite = url.startswith("sqlite")
    if is_sqlite and ":///" in url and not url.endswith(":memory:"):
        db_file = url.split(":///", 1)[1]
        if db_file:
            os.makedirs(os.path.dirname(os.path.abspath(db_file)), exist_ok=True)

    connect_args = {"check_same_thread": False} if is_sqlite else {}
    _ENGINE = create_engine(url, future=True, connect_args=connect_args)
    if is_sqlite:
        event.listen(_ENGINE, "connect", _enable_sqlite_foreign_keys)

    _ENGINE_URL = url
    _SESSIONMAKER = sessionmaker(
        bind=_ENGINE,
        class_=Session,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    return _ENGINE


def db_session() -> Session:
    get_engine()  # ensure _SESSIONMAKER is created
    assert _SESSIONMAKER is not None
    return _SESSIONMAKER()
