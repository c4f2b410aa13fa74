# Key publication and OpenID discovery.
# Created: 2026-02-20

from __future__ import annotations

from fastapi import APIRouter

from pocketauth.api.v1.schemas.oauth2 import JWKSResponse

router = APIRouter(tags=["Discovery"])


@router.get("/jwks.json", response_model=JWKSResponse)
def jwks():
    """Public half of the ID token signing key."""
    from pocketauth.oauth2.server import get_oauth_server

    return get_oauth_server().signer.jwks()


@router.get("/.well-known/openid-configuration")
def openid_configuration():
    from pocketauth.oauth2.server import get_oauth_server

    signer = get_oauth_server().signer
    issuer = signer.issuer.rstrip("/")
    return {
        "issuer": signer.issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "userinfo_endpoint": f"{issuer}/userinfo",
        "revocation_endpoint": f"{issuer}/revoke",
        "jwks_uri": f"{issuer}/jwks.json",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": [signer.algorithm],
        "scopes_supported": ["openid", "profile", "email", "roles"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
        "code_challenge_methods_supported": ["S256"],
        "claims_supported": ["sub", "iss", "aud", "iat", "exp", "email", "username", "country"],
    }
