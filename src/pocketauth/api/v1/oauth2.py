# OAuth2 router: authorize, token, revoke.
# Created: 2026-02-20
#
# Handlers are plain ``def`` so storage and Argon2 work runs on the threadpool.

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Form, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from pocketauth.api.templates import render_error, render_login
from pocketauth.api.v1.schemas.oauth2 import OAuthErrorResponse, TokenResponse
from pocketauth.oauth2.errors import AccessDenied, OAuthError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_ERROR_RESPONSES = {
    400: {"model": OAuthErrorResponse},
    401: {"model": OAuthErrorResponse},
    500: {"model": OAuthErrorResponse},
}


def _error_page(exc: OAuthError) -> HTMLResponse:
    return HTMLResponse(render_error(exc.error, exc.description), status_code=exc.status_code)


def _redirect_with(uri: str, **params: str) -> str:
    """Append *params* to *uri*, keeping any query it already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


@router.get("/authorize", response_class=HTMLResponse)
def authorize(
    request: Request,
    response_type: str = Query("code"),
    client_id: str = Query(""),
    redirect_uri: str = Query(""),
    scope: str = Query(""),
    state: str = Query(""),
    code_challenge: str = Query(""),
    code_challenge_method: str = Query("S256"),
):
    """Validate the authorization request and show the login form."""
    from pocketauth.config import get_settings
    from pocketauth.oauth2.csrf import get_csrf_store
    from pocketauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    try:
        auth_request = server.validate_authorize_request(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            response_type=response_type,
        )
        if get_settings().enforce_origin:
            server.authenticate_origin(client_id, request.headers)
    except OAuthError as exc:
        logger.info("Rejected authorization request for client %r: %s", client_id, exc.error)
        return _error_page(exc)

    return HTMLResponse(
        render_login(
            client_name=auth_request.client.client_name,
            client_id=auth_request.client.client_id,
            redirect_uri=auth_request.redirect_uri,
            scope=auth_request.scope,
            state=auth_request.state,
            code_challenge=auth_request.code_challenge,
            code_challenge_method=auth_request.code_challenge_method,
            csrf_token=get_csrf_store().issue(),
        )
    )


@router.post("/authorize", response_class=HTMLResponse)
def authorize_submit(
    request: Request,
    login: str = Form(""),
    password: str = Form(""),
    client_id: str = Form(""),
    redirect_uri: str = Form(""),
    state: str = Form(""),
    scope: str = Form(""),
    code_challenge: str = Form(""),
    code_challenge_method: str = Form("S256"),
    csrf_token: str = Form(""),
):
    """Authenticate the resource owner and redirect back with a code."""
    from pocketauth.config import get_settings
    from pocketauth.oauth2.csrf import get_csrf_store
    from pocketauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    csrf = get_csrf_store()
    try:
        auth_request = server.validate_authorize_request(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        if get_settings().enforce_origin:
            server.authenticate_origin(client_id, request.headers)
    except OAuthError as exc:
        return _error_page(exc)

    def _login_form(errors: dict[str, str]) -> HTMLResponse:
        return HTMLResponse(
            render_login(
                client_name=auth_request.client.client_name,
                client_id=auth_request.client.client_id,
                redirect_uri=auth_request.redirect_uri,
                scope=auth_request.scope,
                state=auth_request.state,
                code_challenge=auth_request.code_challenge,
                code_challenge_method=auth_request.code_challenge_method,
                csrf_token=csrf.issue(),
                login=login,
                errors=errors,
            )
        )

    if not csrf.consume(csrf_token):
        logger.warning("Login form for client %s had a missing or stale CSRF token", client_id)
        return _login_form({"form": "Your sign-in form expired. Please try again."})

    try:
        user = server.authenticate_user(login, password)
    except AccessDenied as exc:
        return _login_form({"login": exc.description})

    try:
        code = server.issue_code(auth_request, user)
    except OAuthError as exc:
        return _error_page(exc)

    location = _redirect_with(auth_request.redirect_uri, code=code, state=auth_request.state)
    return RedirectResponse(location, status_code=302)


@router.post(
    "/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
def token_exchange(
    request: Request,
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
):
    """Exchange an authorization code or refresh token for a token set."""
    from pocketauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    client = server.authenticate_client(
        request.headers.get("authorization"), client_id, client_secret
    )
    result = server.token(
        grant_type=grant_type,
        client=client,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        refresh_token=refresh_token,
    )
    return JSONResponse(result, headers=NO_STORE_HEADERS)


@router.post("/revoke", responses=_ERROR_RESPONSES)
def revoke_token(
    request: Request,
    token: str = Form(""),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
):
    """Revoke an access or refresh token (RFC 7009). Unknown tokens still get 200."""
    from pocketauth.oauth2.server import get_oauth_server

    server = get_oauth_server()
    client = server.authenticate_client(
        request.headers.get("authorization"), client_id, client_secret
    )
    server.revoke(client.client_id, token)
    return Response(status_code=200)
