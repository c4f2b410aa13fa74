# OAuth2 error taxonomy.
# Created: 2026-10-19
#
# Every protocol failure the engine can surface is an OAuthError subclass
# carrying its RFC 6749 error code and HTTP status. Backend failures use
# StorageError / SigningError and are reduced to ServerError before they
# reach a caller.

from __future__ import annotations


class OAuthError(Exception):
    """Base class for errors returned to OAuth2 callers."""

    error = "server_error"
    status_code = 400
    default_description = "The request could not be processed."

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}

    def headers(self) -> dict[str, str] | None:
        return None


class InvalidRequest(OAuthError):
    error = "invalid_request"
    default_description = (
        "The request is missing a required parameter, includes an invalid "
        "parameter value, or is otherwise malformed."
    )


class InvalidClient(OAuthError):
    error = "invalid_client"
    status_code = 401
    default_description = "Client authentication failed."

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": 'Basic realm="pocketauth"'}


class InvalidGrant(OAuthError):
    error = "invalid_grant"
    default_description = (
        "The provided authorization grant is invalid, expired, revoked, or does "
        "not match the redirection URI used in the authorization request."
    )


class InvalidScope(OAuthError):
    error = "invalid_scope"
    default_description = "The requested scope is invalid, unknown, or malformed."


class UnauthorizedClient(OAuthError):
    error = "unauthorized_client"
    default_description = (
        "The client is not authorized to request an authorization code using this method."
    )


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"
    default_description = "The authorization grant type is not supported by the authorization server."


class UnsupportedResponseType(OAuthError):
    error = "unsupported_response_type"
    default_description = (
        "The authorization server does not support obtaining an authorization code using this method."
    )


class AccessDenied(OAuthError):
    error = "access_denied"
    status_code = 403
    default_description = "The resource owner or authorization server denied the request."


class Forbidden(OAuthError):
    error = "forbidden"
    status_code = 403
    default_description = "The request is not permitted for this client or token."


class Unauthorized(OAuthError):
    error = "invalid_token"
    status_code = 401
    default_description = "The access token is missing, invalid, or expired."

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": f'Bearer error="{self.error}"'}


class NotFound(OAuthError):
    error = "not_found"
    status_code = 404
    default_description = "The requested resource does not exist."


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500
    default_description = (
        "The authorization server encountered an unexpected condition that "
        "prevented it from fulfilling the request."
    )


class StorageError(Exception):
    """Raised by credential store backends when persistence fails."""


class SigningError(Exception):
    """Raised when key material cannot be loaded or a token cannot be signed."""
