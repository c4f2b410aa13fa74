# OAuth2 data models.
# Created: 2026-02-20

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

# Fixed lifetimes. Not configurable at runtime.
CODE_TTL = timedelta(minutes=10)
ACCESS_TOKEN_TTL = timedelta(hours=24)
REFRESH_TOKEN_TTL = timedelta(days=30)
ID_TOKEN_TTL = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(UTC)


def split_scopes(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates but keeping order."""
    seen: list[str] = []
    for s in (scope or "").split():
        if s not in seen:
            seen.append(s)
    return seen


@dataclass
class OAuthClient:
    """Registered OAuth2 client."""

    client_id: str
    client_secret: str
    client_name: str
    redirect_uris: list[str] = field(default_factory=list)
    allowed_scopes: list[str] = field(default_factory=lambda: ["openid"])
    authorized_origins: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class User:
    """Resource owner account."""

    email: str
    username: str
    password_hash: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    country: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    is_admin: bool = False
    is_moderator: bool = False
    is_member: bool = False
    is_active: bool = True
    is_verified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_login_at: datetime | None = None

    def public_view(self) -> dict:
        """Profile fields safe to return to API callers (no password hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "country": self.country,
            "avatar_url": self.avatar_url,
            "bio": self.bio,
            "is_admin": self.is_admin,
            "is_moderator": self.is_moderator,
            "is_member": self.is_member,
            "is_active": self.is_active,
            "is_verified": self.is_verified,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
        }


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scopes: str
    code_challenge: str
    code_challenge_method: str = "S256"
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=lambda: utcnow() + CODE_TTL)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


@dataclass
class AccessToken:
    """Opaque bearer token."""

    token: str
    client_id: str
    user_id: str
    scopes: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=lambda: utcnow() + ACCESS_TOKEN_TTL)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes.split()


@dataclass
class RefreshToken:
    """Refresh token, paired 1:1 with the access token it was issued alongside."""

    token: str
    access_token: str
    client_id: str
    user_id: str
    scopes: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=lambda: utcnow() + REFRESH_TOKEN_TTL)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())
