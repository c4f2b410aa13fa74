# Cryptographic primitives: random tokens, PKCE, RSA key material.
# Created: 2026-10-19

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from pocketauth.oauth2.errors import SigningError

logger = logging.getLogger(__name__)

# 32 random bytes -> 43 base64url chars
_TOKEN_BYTES = 32
_CODE_BYTES = 32


def generate_token(nbytes: int = _TOKEN_BYTES) -> str:
    """Opaque bearer credential (access or refresh token)."""
    return secrets.token_urlsafe(nbytes)


def generate_code() -> str:
    """Single-use authorization code."""
    return secrets.token_urlsafe(_CODE_BYTES)


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def pkce_challenge(code_verifier: str) -> str:
    """S256 = BASE64URL(SHA256(code_verifier)), no padding."""
    return b64url(hashlib.sha256(code_verifier.encode()).digest())


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    if not code_verifier or not code_challenge:
        return False
    return hmac.compare_digest(pkce_challenge(code_verifier).encode(), code_challenge.encode())


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def _int_to_b64url(value: int) -> str:
    length = (value.bit_length() + 7) // 8
    return b64url(value.to_bytes(length, "big"))


@dataclass(frozen=True)
class SigningKey:
    """RSA key pair used for ID tokens. The private half stays in memory."""

    private_key: rsa.RSAPrivateKey
    kid: str = "main"

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    def public_jwk(self) -> dict[str, str]:
        numbers = self.public_key.public_numbers()
        return {
            "kty": "RSA",
            "use": "sig",
            "alg": "RS256",
            "kid": self.kid,
            "n": _int_to_b64url(numbers.n),
            "e": _int_to_b64url(numbers.e),
        }

    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def load_signing_key(
    private_key_path: Path,
    public_key_path: Path | None = None,
    kid: str = "main",
) -> SigningKey:
    """Load the RSA private key (and optionally check the public key) from PEM files."""
    try:
        private_key = serialization.load_pem_private_key(
            private_key_path.read_bytes(), password=None
        )
    except (OSError, ValueError, TypeError) as exc:
        raise SigningError(f"Failed to load private key from {private_key_path}: {exc}") from exc

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(f"{private_key_path} is not an RSA private key")

    key = SigningKey(private_key=private_key, kid=kid)

    if public_key_path is not None:
        try:
            public_key = serialization.load_pem_public_key(public_key_path.read_bytes())
        except (OSError, ValueError) as exc:
            raise SigningError(f"Failed to load public key from {public_key_path}: {exc}") from exc
        if not isinstance(public_key, rsa.RSAPublicKey) or (
            public_key.public_numbers() != key.public_key.public_numbers()
        ):
            raise SigningError(f"{public_key_path} does not match {private_key_path}")

    logger.info("Loaded RSA signing key %s from %s", kid, private_key_path)
    return key


def generate_signing_key(kid: str = "main", key_size: int = 2048) -> SigningKey:
    """Ephemeral key pair for development and tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return SigningKey(private_key=private_key, kid=kid)
