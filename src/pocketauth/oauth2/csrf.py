"""One-time CSRF tokens for the login form.

Tokens are opaque random strings held in a TTL key/value store.  The default
``InMemoryCSRFStore`` suits a single process; multi-instance deployments plug in
anything that implements ``CSRFStore`` (e.g. a shared cache).
"""

from __future__ import annotations

import secrets
import threading
import time
from typing import Protocol

__all__ = [
    "CSRFStore",
    "InMemoryCSRFStore",
    "DEFAULT_CSRF_TTL",
    "get_csrf_store",
    "reset_csrf_store",
]

DEFAULT_CSRF_TTL = 15 * 60.0


class CSRFStore(Protocol):
    def issue(self) -> str:
        """Create and remember a fresh token."""
        ...

    def consume(self, token: str) -> bool:
        """Return True once for a live token, then forget it."""
        ...


class InMemoryCSRFStore:
    """Process-local TTL map. Expired entries are evicted lazily on issue."""

    def __init__(self, ttl: float = DEFAULT_CSRF_TTL):
        self.ttl = ttl
        self._tokens: dict[str, float] = {}
        self._lock = threading.Lock()

    def issue(self) -> str:
        token = secrets.token_urlsafe(32)
        now = time.monotonic()
        with self._lock:
            self._evict(now)
            self._tokens[token] = now + self.ttl
        return token

    def consume(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            expires = self._tokens.pop(token, None)
        return expires is not None and time.monotonic() < expires

    def _evict(self, now: float) -> int:
        stale = [k for k, exp in self._tokens.items() if exp <= now]
        for k in stale:
            del self._tokens[k]
        return len(stale)


# Singleton
_store: CSRFStore | None = None


def get_csrf_store() -> CSRFStore:
    global _store
    if _store is None:
        from pocketauth.config import get_settings

        _store = InMemoryCSRFStore(ttl=get_settings().csrf_ttl_seconds)
    return _store


def reset_csrf_store() -> None:
    global _store
    _store = None
