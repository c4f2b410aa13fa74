# OpenID Connect ID tokens and the public JWKS document.
# Created: 2026-10-19
#
# Access and refresh tokens stay opaque and database-resident so they can be
# revoked server-side. The ID token is the only JWT this server issues.

from __future__ import annotations

import logging
from datetime import datetime

import jwt

from pocketauth.oauth2.crypto import SigningKey
from pocketauth.oauth2.errors import SigningError
from pocketauth.oauth2.models import ID_TOKEN_TTL, User, utcnow

logger = logging.getLogger(__name__)


def build_id_claims(
    user: User,
    client_id: str,
    scopes: str,
    issuer: str,
    now: datetime | None = None,
) -> dict:
    """Claim set for *user*, shaped by the granted *scopes*."""
    granted = set(scopes.split())
    iat = int((now or utcnow()).timestamp())
    claims: dict = {
        "sub": user.id,
        "iss": issuer,
        "aud": client_id,
        "iat": iat,
        "exp": iat + int(ID_TOKEN_TTL.total_seconds()),
    }
    if "email" in granted:
        claims["email"] = user.email
    if "profile" in granted:
        claims["username"] = user.username
        if user.country:
            claims["country"] = user.country
    return claims


class IdTokenSigner:
    """Signs ID tokens with RS256 and publishes the matching public key."""

    algorithm = "RS256"

    def __init__(self, key: SigningKey, issuer: str):
        self.key = key
        self.issuer = issuer

    def sign(self, user: User, client_id: str, scopes: str) -> str:
        claims = build_id_claims(user, client_id, scopes, self.issuer)
        try:
            return jwt.encode(
                claims,
                self.key.private_key,
                algorithm=self.algorithm,
                headers={"kid": self.key.kid},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise SigningError(f"Failed to sign ID token: {exc}") from exc

    def jwks(self) -> dict:
        return {"keys": [self.key.public_jwk()]}

    def verify(self, token: str, audience: str) -> dict:
        """Decode an ID token issued by this server (used by tests and relying-party tooling)."""
        return jwt.decode(
            token,
            self.key.public_key,
            algorithms=[self.algorithm],
            audience=audience,
            issuer=self.issuer,
        )
