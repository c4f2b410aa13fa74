# Resource access guard: bearer token -> (access token, user).
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass

from pocketauth.oauth2.errors import Unauthorized
from pocketauth.oauth2.models import AccessToken, User
from pocketauth.oauth2.storage import CredentialRepository


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller of a protected endpoint, with the scopes its token carries."""

    user: User
    access_token: AccessToken

    def has_scope(self, scope: str) -> bool:
        return self.access_token.has_scope(scope)

    @property
    def has_openid(self) -> bool:
        return self.has_scope("openid")

    @property
    def has_profile(self) -> bool:
        return self.has_scope("profile")

    @property
    def has_email(self) -> bool:
        return self.has_scope("email")

    @property
    def has_roles(self) -> bool:
        return self.has_scope("roles")


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise Unauthorized("Missing Authorization header.")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Authorization header must use the Bearer scheme.")
    return token.strip()


def authenticate_bearer(store: CredentialRepository, authorization: str | None) -> AuthenticatedUser:
    """Resolve a live access token and its user, or raise Unauthorized."""
    token = extract_bearer_token(authorization)

    access_token = store.get_access_token(token)
    if access_token is None:
        raise Unauthorized()

    user = store.get_user(access_token.user_id)
    if user is None:
        raise Unauthorized()

    return AuthenticatedUser(user=user, access_token=access_token)


def userinfo_claims(auth: AuthenticatedUser) -> dict:
    """Claims for ``/userinfo``; fields for scopes the token lacks are omitted."""
    user = auth.user
    claims: dict = {"sub": user.id}
    if auth.has_email:
        claims["email"] = user.email
        claims["email_verified"] = user.is_verified
    if auth.has_profile:
        claims["username"] = user.username
        for name in ("country", "avatar_url", "bio"):
            value = getattr(user, name)
            if value is not None:
                claims[name] = value
    if auth.has_roles:
        claims["is_admin"] = user.is_admin
        claims["is_moderator"] = user.is_moderator
        claims["is_member"] = user.is_member
    return claims
