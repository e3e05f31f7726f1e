"""Bearer token cache keyed by provider.

Each entry holds the token and the monotonic deadline after which it is no longer served.
Refreshes are single-flight per key: concurrent callers that find the entry stale queue on
the key's lock and the first one through does the fetch.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CachedToken:
    value: str
    expires_at: float


class TokenCache:
    def __init__(
        self,
        *,
        max_ttl_seconds: float = 3500,
        safety_margin_seconds: float = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_ttl = max_ttl_seconds
        self._margin = safety_margin_seconds
        self._clock = clock
        self._entries: dict[str, CachedToken] = {}
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_mutex = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_mutex:
            return self._locks[key]

    def _fresh(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock() < entry.expires_at:
            return entry.value
        return None

    def get_or_fetch(self, key: str, fetch: Callable[[], tuple[str, float | None]]) -> str:
        """Return the cached token for key, calling fetch() only when it is missing or stale.

        fetch returns (token, expires_in_seconds or None). The entry lives for
        min(max_ttl, expires_in - safety_margin) so it is always dropped before the real
        expiry. Exceptions from fetch propagate and leave the cache untouched.
        """

        token = self._fresh(key)
        if token is not None:
            return token

        with self._lock_for(key):
            token = self._fresh(key)
            if token is not None:
                return token

            value, expires_in = fetch()
            ttl = self._max_ttl
            if expires_in is not None:
                ttl = min(ttl, float(expires_in) - self._margin)
            if ttl > 0:
                self._entries[key] = CachedToken(value=value, expires_at=self._clock() + ttl)
            return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
