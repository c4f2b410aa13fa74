# OAuth2 schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str
    id_token: str | None = None


class OAuthErrorResponse(BaseModel):
    """RFC 6749 error body."""

    error: str
    error_description: str


class JsonWebKey(BaseModel):
    kty: str
    use: str
    alg: str
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    keys: list[JsonWebKey]


class UserInfoResponse(BaseModel):
    """Claims about the token's user. Fields outside the granted scopes are omitted."""

    sub: str
    email: str | None = None
    email_verified: bool | None = None
    username: str | None = None
    country: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    is_admin: bool | None = None
    is_moderator: bool | None = None
    is_member: bool | None = None


class UpdateUserRequest(BaseModel):
    """Profile update. Role and status flags are applied only for admin callers."""

    user_id: str
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+$")
    username: str | None = Field(default=None, min_length=1, max_length=64)
    country: str | None = Field(default=None, max_length=8)
    avatar_url: str | None = None
    bio: str | None = Field(default=None, max_length=2000)
    is_moderator: bool | None = None
    is_admin: bool | None = None
    is_active: bool | None = None


class UpdateUserResponse(BaseModel):
    success: bool = True
    user: dict


class HealthResponse(BaseModel):
    status: str = "ok"
    storage: str = "ok"
