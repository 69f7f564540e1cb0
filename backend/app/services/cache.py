"""In-memory TTL cache of the latest poll result per holding."""

import threading
import time
from typing import Any

from app.config import VALUATION_CACHE_TTL


class ValuationCache:
    """Thread-safe latest-value store keyed by (user_id, fund_code).

    Entries expire ``ttl`` seconds after they were written, so a holding whose
    oracle went quiet stops reporting a day profit.
    """

    def __init__(self, ttl: float = VALUATION_CACHE_TTL):
        self._store: dict[tuple[str, str], tuple[Any, float]] = {}
        self._ttl = ttl
        self._lock = threading.Lock()

    def put(self, user_id: str, code: str, value: Any) -> None:
        expires_at = time.monotonic() + self._ttl
        with self._lock:
            self._store[(user_id, code)] = (value, expires_at)

    def get(self, user_id: str, code: str) -> Any | None:
        with self._lock:
            entry = self._store.get((user_id, code))
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() > expires_at:
                del self._store[(user_id, code)]
                return None
            return value

    def for_user(self, user_id: str) -> dict[str, Any]:
        """Live entries of one user, keyed by fund code."""
        now = time.monotonic()
        with self._lock:
            return {
                code: value
                for (uid, code), (value, expires_at) in self._store.items()
                if uid == user_id and now <= expires_at
            }

    def drop(self, user_id: str, code: str | None = None) -> None:
        with self._lock:
            for key in list(self._store):
                if key[0] == user_id and (code is None or key[1] == code):
                    del self._store[key]
