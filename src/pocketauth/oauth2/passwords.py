# Password hashing and verification (Argon2id + server-side pepper).
# Created: 2026-10-19

from __future__ import annotations

import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

# OWASP suggests ~19 MiB; 15000 KiB keeps login latency reasonable on small hosts.
_MEMORY_COST_KIB = 15000
_TIME_COST = 2
_PARALLELISM = 1
_HASH_LEN = 32


class PasswordVerifier:
    """Hash and verify passwords with Argon2id. The pepper is appended before hashing."""

    def __init__(self, pepper: str = ""):
        self._pepper = pepper
        self._hasher = PasswordHasher(
            time_cost=_TIME_COST,
            memory_cost=_MEMORY_COST_KIB,
            parallelism=_PARALLELISM,
            hash_len=_HASH_LEN,
        )
        self._dummy_hash: str | None = None

    def _peppered(self, password: str) -> str:
        return f"{password}{self._pepper}"

    def hash(self, password: str) -> str:
        return self._hasher.hash(self._peppered(password))

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, self._peppered(password))
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Stored password hash could not be verified", exc_info=True)
            return False

    def verify_dummy(self, password: str) -> bool:
        """Burn the same work as a real check so unknown logins are not faster to reject."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("pocketauth-dummy-password")
        self.verify(password, self._dummy_hash)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self._hasher.check_needs_rehash(password_hash)
