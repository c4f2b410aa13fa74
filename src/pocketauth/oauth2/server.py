# OAuth2 Authorization Server with PKCE support.
# Created: 2026-02-20
#
# Implements the authorization code flow with PKCE (RFC 7636), refresh
# token rotation, revocation (RFC 7009) and OpenID Connect ID tokens.
# Every multi-row mutation runs inside one CredentialStore transaction.

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from pocketauth.oauth2.clients import ClientAuthenticator
from pocketauth.oauth2.crypto import generate_code, generate_token, verify_pkce
from pocketauth.oauth2.errors import (
    AccessDenied,
    Forbidden,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    NotFound,
    ServerError,
    SigningError,
    StorageError,
    UnauthorizedClient,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from pocketauth.oauth2.guard import AuthenticatedUser, authenticate_bearer
from pocketauth.oauth2.id_tokens import IdTokenSigner
from pocketauth.oauth2.models import (
    ACCESS_TOKEN_TTL,
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    User,
    split_scopes,
    utcnow,
)
from pocketauth.oauth2.passwords import PasswordVerifier
from pocketauth.oauth2.storage import CredentialRepository, CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid"
SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")

# BASE64URL(SHA256(verifier)) without padding is always 43 characters
_S256_CHALLENGE = re.compile(r"^[A-Za-z0-9_-]{43}\Z")

# Profile fields a user may change on themselves; admins may also change the rest.
_SELF_EDITABLE = ("email", "username", "country", "avatar_url", "bio")
_ADMIN_EDITABLE = ("is_moderator", "is_admin", "is_active")


@dataclass(frozen=True)
class AuthorizeRequest:
    """A validated ``/authorize`` request, ready for the resource owner to decide on."""

    client: OAuthClient
    redirect_uri: str
    scope: str
    state: str
    code_challenge: str
    code_challenge_method: str = "S256"


class AuthorizationServer:
    """OAuth2 authorization server with PKCE."""

    def __init__(
        self,
        store: CredentialStore,
        signer: IdTokenSigner,
        passwords: PasswordVerifier | None = None,
    ):
        self.store = store
        self.signer = signer
        self.passwords = passwords or PasswordVerifier()
        self.clients = ClientAuthenticator(store)

    @contextmanager
    def _server_errors(self, operation: str) -> Iterator[None]:
        """Reduce backend failures to a generic ServerError, logging the detail."""
        try:
            yield
        except (StorageError, SigningError) as exc:
            logger.exception("%s failed", operation)
            raise ServerError() from exc

    # ------------------------------------------------------------------
    # Client authentication
    # ------------------------------------------------------------------

    def authenticate_client(
        self,
        authorization: str | None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> OAuthClient:
        """Client secret via HTTP Basic, falling back to form fields."""
        with self._server_errors("client authentication"):
            return self.clients.authenticate_secret(authorization, client_id, client_secret)

    def authenticate_origin(self, client_id: str, headers: Mapping[str, str]) -> OAuthClient:
        with self._server_errors("origin authentication"):
            return self.clients.authenticate_origin(client_id, headers)

    # ------------------------------------------------------------------
    # Authorization grant
    # ------------------------------------------------------------------

    def validate_authorize_request(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str | None,
        state: str,
        code_challenge: str,
        code_challenge_method: str = "S256",
        response_type: str = "code",
    ) -> AuthorizeRequest:
        """Check an authorization request before any code can exist."""
        if response_type != "code":
            raise UnsupportedResponseType()

        if code_challenge_method != "S256":
            raise InvalidRequest("code_challenge_method must be S256.")

        if not code_challenge:
            raise InvalidRequest("code_challenge is required.")

        if not _S256_CHALLENGE.match(code_challenge):
            raise InvalidRequest("code_challenge must be 43 base64url characters.")

        if not state:
            raise InvalidRequest("state is required.")

        with self._server_errors("client lookup"):
            client = self.store.get_client(client_id) if client_id else None
        if client is None:
            raise UnauthorizedClient(f"Unknown client_id: {client_id}")

        if redirect_uri not in client.redirect_uris:
            raise InvalidRequest("redirect_uri is not registered for this client.")

        requested = split_scopes(scope) or [DEFAULT_SCOPE]
        invalid = [s for s in requested if s not in client.allowed_scopes]
        if invalid:
            raise InvalidScope(f"Scope not allowed for this client: {' '.join(invalid)}")

        return AuthorizeRequest(
            client=client,
            redirect_uri=redirect_uri,
            scope=" ".join(requested),
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )

    def authenticate_user(self, login: str, password: str) -> User:
        """Check resource owner credentials. The error never says which part was wrong."""
        with self._server_errors("user lookup"):
            user = self.store.find_user_by_login(login) if login else None

        if user is None:
            self.passwords.verify_dummy(password)
            logger.warning("Login failed for unknown account")
            raise AccessDenied("Invalid login or password.")

        if not self.passwords.verify(password, user.password_hash) or not user.is_active:
            logger.warning("Login failed for user %s", user.id)
            raise AccessDenied("Invalid login or password.")

        if self.passwords.needs_rehash(user.password_hash):
            user = dataclasses.replace(
                user, password_hash=self.passwords.hash(password), updated_at=utcnow()
            )
            with self._server_errors("password rehash"):
                self.store.update_user(user)
            logger.info("Rehashed password of user %s with current parameters", user.id)

        return user

    def issue_code(self, request: AuthorizeRequest, user: User) -> str:
        """Persist a single-use code binding client, user, redirect URI, scopes and PKCE challenge."""
        code = generate_code()
        auth_code = AuthorizationCode(
            code=code,
            client_id=request.client.client_id,
            user_id=user.id,
            redirect_uri=request.redirect_uri,
            scopes=request.scope,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
        )
        with self._server_errors("authorization code issue"):
            with self.store.transaction() as repo:
                repo.insert_code(auth_code)
                repo.update_user(dataclasses.replace(user, last_login_at=utcnow()))

        logger.info(
            "Issued authorization code for user %s, client %s, scope %r",
            user.id,
            request.client.client_id,
            request.scope,
        )
        return code

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def token(
        self,
        grant_type: str | None,
        client: OAuthClient,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
    ) -> dict[str, Any]:
        if not grant_type:
            raise InvalidRequest("grant_type is required.")
        if grant_type == "authorization_code":
            return self.exchange(
                client_id=client.client_id,
                code=code or "",
                redirect_uri=redirect_uri or "",
                code_verifier=code_verifier or "",
            )
        if grant_type == "refresh_token":
            return self.refresh(client_id=client.client_id, refresh_token=refresh_token or "")
        raise UnsupportedGrantType()

    def exchange(
        self,
        client_id: str,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> dict[str, Any]:
        """Exchange an authorization code + verifier for tokens."""
        if not code or not redirect_uri or not code_verifier:
            raise InvalidRequest("code, redirect_uri and code_verifier are required.")

        with self._server_errors("authorization code exchange"):
            with self.store.transaction() as repo:
                auth_code = repo.get_code(code)
                if auth_code is None:
                    raise InvalidGrant("Authorization code is invalid or expired.")

                if auth_code.client_id != client_id or auth_code.redirect_uri != redirect_uri:
                    raise InvalidGrant("Authorization code was not issued for this request.")

                # S256: BASE64URL(SHA256(code_verifier)) must equal the stored challenge
                if auth_code.code_challenge_method != "S256" or not verify_pkce(
                    code_verifier, auth_code.code_challenge
                ):
                    raise InvalidGrant("PKCE verification failed.")

                user = repo.get_user(auth_code.user_id)
                if user is None:
                    logger.error(
                        "Authorization code references missing user %s", auth_code.user_id
                    )
                    raise ServerError()

                # A concurrent redemption that committed first leaves nothing to delete.
                if not repo.delete_code(code):
                    raise InvalidGrant("Authorization code has already been used.")

                access, refresh = self._issue_pair(repo, client_id, user.id, auth_code.scopes)
                id_token = self._id_token(user, client_id, auth_code.scopes)

        logger.info("Exchanged authorization code for user %s, client %s", user.id, client_id)
        return self._token_response(access, refresh, id_token)

    def refresh(self, client_id: str, refresh_token: str) -> dict[str, Any]:
        """Rotate a refresh token: the old pair dies in the transaction that issues the new one."""
        if not refresh_token:
            raise InvalidRequest("refresh_token is required.")

        with self._server_errors("refresh token rotation"):
            with self.store.transaction() as repo:
                old = repo.get_refresh_token(refresh_token)
                if old is None:
                    raise InvalidGrant("Refresh token is invalid or expired.")

                if old.client_id != client_id:
                    raise InvalidGrant("Refresh token was not issued to this client.")

                if not repo.delete_refresh_token(old.token):
                    raise InvalidGrant("Refresh token has already been used.")
                repo.delete_access_token(old.access_token)

                user = repo.get_user(old.user_id)
                if user is None:
                    logger.error("Refresh token references missing user %s", old.user_id)
                    raise ServerError()

                access, refresh = self._issue_pair(repo, client_id, user.id, old.scopes)
                id_token = self._id_token(user, client_id, old.scopes)

        logger.info("Rotated refresh token for user %s, client %s", user.id, client_id)
        return self._token_response(access, refresh, id_token)

    def _issue_pair(
        self,
        repo: CredentialRepository,
        client_id: str,
        user_id: str,
        scopes: str,
    ) -> tuple[AccessToken, RefreshToken]:
        access = AccessToken(
            token=generate_token(),
            client_id=client_id,
            user_id=user_id,
            scopes=scopes,
        )
        refresh = RefreshToken(
            token=generate_token(),
            access_token=access.token,
            client_id=client_id,
            user_id=user_id,
            scopes=scopes,
            created_at=access.created_at,
        )
        repo.insert_access_token(access)
        repo.insert_refresh_token(refresh)
        return access, refresh

    def _id_token(self, user: User, client_id: str, scopes: str) -> str | None:
        if "openid" not in scopes.split():
            return None
        return self.signer.sign(user, client_id, scopes)

    @staticmethod
    def _token_response(
        access: AccessToken,
        refresh: RefreshToken,
        id_token: str | None,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "access_token": access.token,
            "token_type": "Bearer",
            "expires_in": int(ACCESS_TOKEN_TTL.total_seconds()),
            "refresh_token": refresh.token,
            "scope": access.scopes,
        }
        if id_token is not None:
            response["id_token"] = id_token
        return response

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, client_id: str, token: str) -> bool:
        """Revoke an access or refresh token together with its pair.

        Returns whether anything was deleted. Unknown and foreign tokens are
        not errors.
        """
        if not token:
            raise InvalidRequest("token is required.")

        with self._server_errors("token revocation"):
            with self.store.transaction() as repo:
                access = repo.get_access_token(token, include_expired=True)
                if access is not None and access.client_id == client_id:
                    repo.delete_access_token(access.token)
                    repo.delete_refresh_tokens_for(access.token)
                    logger.info("Revoked access token for user %s, client %s", access.user_id, client_id)
                    return True

                refresh = repo.get_refresh_token(token, include_expired=True)
                if refresh is not None and refresh.client_id == client_id:
                    repo.delete_refresh_token(refresh.token)
                    repo.delete_access_token(refresh.access_token)
                    logger.info("Revoked refresh token for user %s, client %s", refresh.user_id, client_id)
                    return True

        logger.debug("Revocation for client %s matched no owned token", client_id)
        return False

    # ------------------------------------------------------------------
    # Protected resources
    # ------------------------------------------------------------------

    def verify_access_token(self, access_token: str) -> AccessToken | None:
        """Verify an access token and return the token record if valid."""
        with self._server_errors("access token lookup"):
            return self.store.get_access_token(access_token)

    def authenticate_bearer(self, authorization: str | None) -> AuthenticatedUser:
        with self._server_errors("bearer authentication"):
            return authenticate_bearer(self.store, authorization)

    def update_profile(
        self,
        caller: AuthenticatedUser,
        user_id: str,
        changes: dict[str, Any],
    ) -> User:
        """Apply profile changes. Users edit themselves; admins edit anyone, including role flags."""
        is_admin = caller.user.is_admin
        if user_id != caller.user.id and not is_admin:
            raise Forbidden("Insufficient permissions to update this user.")

        editable = _SELF_EDITABLE + (_ADMIN_EDITABLE if is_admin else ())
        updates = {k: v for k, v in changes.items() if k in editable and v is not None}

        with self._server_errors("profile update"):
            with self.store.transaction() as repo:
                target = repo.get_user(user_id)
                if target is None:
                    raise NotFound(f"User not found: {user_id}")

                updated = dataclasses.replace(target, **updates, updated_at=utcnow())
                if updated.email != target.email or updated.username != target.username:
                    if repo.find_user_conflict(updated.id, updated.email, updated.username):
                        raise InvalidRequest("Email or username is already taken.")

                repo.update_user(updated)

        logger.info("User %s updated profile of %s: %s", caller.user.id, user_id, sorted(updates))
        return updated


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        from pocketauth.config import get_settings
        from pocketauth.oauth2.provisioning import build_server

        _server = build_server(get_settings())
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
