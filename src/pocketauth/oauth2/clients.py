# Client authentication: shared secret (Basic or form) and registered origin.
# Created: 2026-10-19

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from urllib.parse import unquote

from pocketauth.oauth2.crypto import constant_time_equals
from pocketauth.oauth2.errors import Forbidden, InvalidClient, InvalidRequest
from pocketauth.oauth2.models import OAuthClient
from pocketauth.oauth2.storage import CredentialRepository

logger = logging.getLogger(__name__)


def parse_basic_auth(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic base64(client_id:client_secret)``."""
    if not authorization or not authorization.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[len("Basic ") :].strip(), validate=True)
        credentials = decoded.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = credentials.partition(":")
    if not sep:
        return None
    # RFC 6749 2.3.1: both parts are form-urlencoded before base64
    return unquote(client_id), unquote(client_secret)


def effective_origin(headers: Mapping[str, str]) -> str | None:
    """Origin the request was made from, preferring the proxy's forwarded host."""
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded_host = lowered.get("x-forwarded-host", "").split(",")[0].strip()
    if forwarded_host:
        proto = lowered.get("x-forwarded-proto", "https").split(",")[0].strip() or "https"
        return f"{proto}://{forwarded_host}"
    origin = lowered.get("origin", "").strip()
    return origin or None


class ClientAuthenticator:
    """Resolves the calling client. Read-only."""

    def __init__(self, store: CredentialRepository):
        self.store = store

    def authenticate_secret(
        self,
        authorization: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> OAuthClient:
        """Authenticate with HTTP Basic credentials, falling back to form fields."""
        basic = parse_basic_auth(authorization)
        if basic is not None:
            client_id, client_secret = basic

        if not client_id or client_secret is None:
            raise InvalidClient()

        client = self.store.get_client(client_id)
        if client is None:
            logger.warning("Client authentication failed: unknown client %s", client_id)
            raise InvalidClient()

        if not constant_time_equals(client.client_secret, client_secret):
            logger.warning("Client authentication failed: bad secret for %s", client_id)
            raise InvalidClient()

        return client

    def authenticate_origin(self, client_id: str, headers: Mapping[str, str]) -> OAuthClient:
        """Authenticate a browser-facing request by its Origin / X-Forwarded-Host."""
        origin = effective_origin(headers)
        if origin is None:
            raise InvalidRequest("Missing Origin header.")

        client = self.store.get_client(client_id)
        if client is None:
            raise InvalidClient()

        if origin.rstrip("/") not in {o.rstrip("/") for o in client.authorized_origins}:
            logger.warning("Origin %s not authorized for client %s", origin, client_id)
            raise Forbidden(f"Origin {origin} is not authorized for this client.")

        return client
