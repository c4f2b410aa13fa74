# OAuth2 credential storage.
# Created: 2026-02-20
#
# CredentialStore is the persistence seam for clients, users, codes and
# tokens. The engine only talks to this protocol; InMemoryCredentialStore
# backs tests and single-process deployments, SQLCredentialStore
# (sql_storage.py) backs everything else.

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime
from typing import Protocol

from pocketauth.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


class CredentialRepository(Protocol):
    """Per-entity lookups and mutations, usable inside or outside a transaction.

    ``get_*`` token lookups skip expired rows unless ``include_expired`` is set.
    ``delete_*`` methods return whether a row was actually removed.
    """

    def get_client(self, client_id: str) -> OAuthClient | None: ...

    def get_user(self, user_id: str) -> User | None: ...

    def find_user_by_login(self, login: str) -> User | None:
        """Look a user up by username or email."""
        ...

    def find_user_conflict(self, user_id: str, email: str, username: str) -> User | None:
        """Return another user already holding *email* or *username*."""
        ...

    def update_user(self, user: User) -> None: ...

    def insert_code(self, code: AuthorizationCode) -> None: ...

    def get_code(self, code: str, include_expired: bool = False) -> AuthorizationCode | None: ...

    def delete_code(self, code: str) -> bool: ...

    def insert_access_token(self, token: AccessToken) -> None: ...

    def get_access_token(self, token: str, include_expired: bool = False) -> AccessToken | None: ...

    def delete_access_token(self, token: str) -> bool: ...

    def insert_refresh_token(self, token: RefreshToken) -> None: ...

    def get_refresh_token(self, token: str, include_expired: bool = False) -> RefreshToken | None: ...

    def delete_refresh_token(self, token: str) -> bool: ...

    def delete_refresh_tokens_for(self, access_token: str) -> int:
        """Delete every refresh token whose back-reference is *access_token*."""
        ...


class CredentialStore(CredentialRepository, Protocol):
    """Repository plus provisioning, maintenance and transactions."""

    def transaction(self) -> AbstractContextManager[CredentialRepository]:
        """All operations on the yielded repository commit together or not at all."""
        ...

    def insert_client(self, client: OAuthClient) -> None: ...

    def insert_user(self, user: User) -> None: ...

    def purge_expired(self, now: datetime | None = None) -> int:
        """Remove expired codes and tokens. Returns count removed."""
        ...


class InMemoryCredentialStore:
    """Process-local credential store.

    A single re-entrant lock serialises every operation, so a transaction sees
    a consistent view and concurrent redemptions of the same code are
    serialised. On error the transaction restores a snapshot taken on entry.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._clients: dict[str, OAuthClient] = {}
        self._users: dict[str, User] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access: dict[str, AccessToken] = {}
        self._refresh: dict[str, RefreshToken] = {}

    # -- transactions ---------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[InMemoryCredentialStore]:
        with self._lock:
            snapshot = (
                dict(self._users),
                dict(self._codes),
                dict(self._access),
                dict(self._refresh),
            )
            try:
                yield self
            except BaseException:
                self._users, self._codes, self._access, self._refresh = snapshot
                raise

    # -- clients & users ------------------------------------------------

    def insert_client(self, client: OAuthClient) -> None:
        with self._lock:
            self._clients[client.client_id] = client

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            return self._clients.get(client_id)

    def insert_user(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = copy.copy(user)

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def find_user_by_login(self, login: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if login in (user.username, user.email):
                    return copy.copy(user)
        return None

    def find_user_conflict(self, user_id: str, email: str, username: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.id != user_id and (user.email == email or user.username == username):
                    return copy.copy(user)
        return None

    def update_user(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = copy.copy(user)

    # -- authorization codes --------------------------------------------

    def insert_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = code

    def get_code(self, code: str, include_expired: bool = False) -> AuthorizationCode | None:
        with self._lock:
            record = self._codes.get(code)
        if record is None or (not include_expired and record.is_expired()):
            return None
        return record

    def delete_code(self, code: str) -> bool:
        with self._lock:
            return self._codes.pop(code, None) is not None

    # -- access tokens --------------------------------------------------

    def insert_access_token(self, token: AccessToken) -> None:
        with self._lock:
            self._access[token.token] = token

    def get_access_token(self, token: str, include_expired: bool = False) -> AccessToken | None:
        with self._lock:
            record = self._access.get(token)
        if record is None or (not include_expired and record.is_expired()):
            return None
        return record

    def delete_access_token(self, token: str) -> bool:
        with self._lock:
            return self._access.pop(token, None) is not None

    # -- refresh tokens -------------------------------------------------

    def insert_refresh_token(self, token: RefreshToken) -> None:
        with self._lock:
            self._refresh[token.token] = token

    def get_refresh_token(self, token: str, include_expired: bool = False) -> RefreshToken | None:
        with self._lock:
            record = self._refresh.get(token)
        if record is None or (not include_expired and record.is_expired()):
            return None
        return record

    def delete_refresh_token(self, token: str) -> bool:
        with self._lock:
            return self._refresh.pop(token, None) is not None

    def delete_refresh_tokens_for(self, access_token: str) -> int:
        with self._lock:
            stale = [k for k, v in self._refresh.items() if v.access_token == access_token]
            for k in stale:
                del self._refresh[k]
            return len(stale)

    # -- maintenance ----------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> int:
        """Remove expired codes and tokens."""
        now = now or utcnow()
        with self._lock:
            removed = 0
            for table in (self._codes, self._access, self._refresh):
                expired = [k for k, v in table.items() if v.is_expired(now)]
                for k in expired:
                    del table[k]
                removed += len(expired)
        if removed:
            logger.info("Purged %d expired credential rows", removed)
        return removed
