# Shared FastAPI dependencies for the API layer.
# Created: 2026-02-20

from __future__ import annotations

from fastapi import Depends, Request

from pocketauth.oauth2.errors import Forbidden
from pocketauth.oauth2.guard import AuthenticatedUser


def require_user(request: Request) -> AuthenticatedUser:
    """Resolve the bearer token on *request* to its user.

    Raises ``Unauthorized`` (401) for a missing, malformed, unknown or expired
    token. The result is also stored on ``request.state.auth``.
    """
    from pocketauth.oauth2.server import get_oauth_server

    auth = get_oauth_server().authenticate_bearer(request.headers.get("authorization"))
    request.state.auth = auth
    return auth


def require_scope(*scopes: str):
    """FastAPI dependency that checks the bearer token's scopes.

    Usage::

        @router.get("/userinfo")
        def userinfo(auth: AuthenticatedUser = Depends(require_scope("openid"))): ...

    The token must carry every listed scope, otherwise ``Forbidden`` (403).
    """

    def _check(auth: AuthenticatedUser = Depends(require_user)) -> AuthenticatedUser:
        missing = [s for s in scopes if not auth.has_scope(s)]
        if missing:
            raise Forbidden(f"Token missing required scope: {' '.join(missing)}")
        return auth

    return _check
