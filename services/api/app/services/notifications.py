from __future__ import annotations

import os
from typing import Any, Protocol

from services.api.app.utils.logging import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None: ...


class LogNotifier:
    """Writes notifications to the log. Delivery channels (mail, push) plug in behind the
    same interface."""

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification_sent", user_id=user_id, notification=event, **payload)


class NullNotifier:
    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        del user_id, event, payload


def get_notifier() -> Notifier:
    mode = os.getenv("MARCHE_NOTIFIER", "log").strip().lower()

    if mode == "log":
        return LogNotifier()

    if mode in ("none", "off"):
        return NullNotifier()

    raise ValueError(f"Unknown MARCHE_NOTIFIER={mode!r}. Expected log or none.")


def notify_safely(notifier: Notifier, user_id: str, event: str, payload: dict[str, Any]) -> None:
    """Best-effort delivery.

    Called after the business transaction has committed; this must never fail the request.
    """

    try:
        notifier.notify(user_id, event, payload)
    except Exception:
        logger.warning("notification_failed", user_id=user_id, notification=event, exc_info=True)
