from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Header, HTTPException
from services.api.app.db.database import db_session
from services.api.app.db.models import User
from services.api.app.utils.logging import bind_request_context
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated caller.

    Token verification happens upstream (gateway / auth service); this service only trusts
    the forwarded X-User-Id header and checks the user exists.
    """

    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthenticated")

    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthenticated")

    bind_request_context(user_id=user.id)
    return user
