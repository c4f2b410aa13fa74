# Shared fixtures: an AuthorizationServer over the in-memory store.
# Created: 2026-02-20

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from pocketauth.oauth2.crypto import generate_signing_key, pkce_challenge
from pocketauth.oauth2.csrf import InMemoryCSRFStore
from pocketauth.oauth2.errors import OAuthError
from pocketauth.oauth2.id_tokens import IdTokenSigner
from pocketauth.oauth2.models import OAuthClient
from pocketauth.oauth2.passwords import PasswordVerifier
from pocketauth.oauth2.provisioning import create_user, seed_clients
from pocketauth.oauth2.server import AuthorizationServer
from pocketauth.oauth2.storage import InMemoryCredentialStore

ISSUER = "https://auth.example.com"
REDIRECT_URI = "https://app.example.com/callback"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CHALLENGE = pkce_challenge(VERIFIER)
PASSWORD = "correct horse battery staple"


def race(fn, *args, threads: int = 8):
    """Run ``fn(*args)`` on several threads released together.

    Returns ``(results, errors)``: successful return values and the OAuth error
    codes raised by the others.
    """
    barrier = threading.Barrier(threads)

    def attempt():
        barrier.wait()
        try:
            return fn(*args), None
        except OAuthError as exc:
            return None, exc.error

    with ThreadPoolExecutor(max_workers=threads) as pool:
        outcomes = [f.result() for f in [pool.submit(attempt) for _ in range(threads)]]
    results = [r for r, err in outcomes if err is None]
    errors = [err for _, err in outcomes if err is not None]
    return results, errors


CLIENTS = [
    OAuthClient(
        client_id="web-app",
        client_secret="web-secret",
        client_name="Web App",
        redirect_uris=[REDIRECT_URI],
        allowed_scopes=["openid", "profile", "email", "roles"],
        authorized_origins=["https://app.example.com"],
    ),
    OAuthClient(
        client_id="pool",
        client_secret="pool-secret",
        client_name="Pool",
        redirect_uris=[REDIRECT_URI],
        allowed_scopes=["openid", "profile"],
        authorized_origins=["https://pool.example.com"],
    ),
]


@pytest.fixture(scope="session")
def signing_key():
    return generate_signing_key()


@pytest.fixture(scope="session")
def passwords():
    # Argon2 is slow on purpose; share one verifier across the run.
    return PasswordVerifier(pepper="test-pepper")


@pytest.fixture
def store():
    store = InMemoryCredentialStore()
    seed_clients(store, CLIENTS)
    return store


@pytest.fixture
def alice(store, passwords):
    return create_user(
        store,
        passwords,
        email="alice@example.com",
        username="alice",
        password=PASSWORD,
        country="SE",
        bio="hello",
        is_member=True,
        is_verified=True,
    )


@pytest.fixture
def bob(store, passwords):
    return create_user(
        store, passwords, email="bob@example.com", username="bob", password=PASSWORD
    )


@pytest.fixture
def admin(store, passwords):
    return create_user(
        store,
        passwords,
        email="root@example.com",
        username="root",
        password=PASSWORD,
        is_admin=True,
    )


@pytest.fixture
def signer(signing_key):
    return IdTokenSigner(signing_key, issuer=ISSUER)


@pytest.fixture
def server(store, signer, passwords):
    return AuthorizationServer(store, signer, passwords)


@pytest.fixture
def issue_code(server, alice):
    """Mint a code for alice without going through HTTP."""

    def _issue(scope="openid profile", client_id="web-app", challenge=CHALLENGE, user=None):
        request = server.validate_authorize_request(
            client_id=client_id,
            redirect_uri=REDIRECT_URI,
            scope=scope,
            state="xyz",
            code_challenge=challenge,
        )
        return server.issue_code(request, user or alice)

    return _issue


@pytest.fixture
def tokens(server, issue_code):
    """Run the full code exchange and return the token response."""

    def _tokens(scope="openid profile", client_id="web-app", user=None):
        code = issue_code(scope=scope, client_id=client_id, user=user)
        return server.exchange(
            client_id=client_id,
            code=code,
            redirect_uri=REDIRECT_URI,
            code_verifier=VERIFIER,
        )

    return _tokens


@pytest.fixture
def test_app(server, monkeypatch):
    import pocketauth.oauth2.csrf as csrf_mod
    import pocketauth.oauth2.server as mod
    from pocketauth.api.serve import create_app

    monkeypatch.setattr(mod, "_server", server)
    monkeypatch.setattr(csrf_mod, "_store", InMemoryCSRFStore())
    return create_app()


@pytest.fixture
def client(test_app):
    return TestClient(test_app)
