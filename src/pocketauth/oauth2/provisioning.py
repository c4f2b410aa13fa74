# Store construction, client seeding and user creation.
# Created: 2026-10-19

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pocketauth.oauth2.crypto import SigningKey, generate_signing_key, load_signing_key
from pocketauth.oauth2.errors import SigningError
from pocketauth.oauth2.id_tokens import IdTokenSigner
from pocketauth.oauth2.models import OAuthClient, User
from pocketauth.oauth2.passwords import PasswordVerifier
from pocketauth.oauth2.storage import CredentialStore, InMemoryCredentialStore

if TYPE_CHECKING:
    from pocketauth.config import Settings
    from pocketauth.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


def open_store(database_url: str) -> CredentialStore:
    """``memory://`` gives a process-local store; anything else is a SQLAlchemy URL."""
    if database_url == MEMORY_URL:
        return InMemoryCredentialStore()

    from pocketauth.oauth2.sql_storage import SQLCredentialStore

    return SQLCredentialStore.from_url(database_url)


def load_clients_file(path: Path) -> list[OAuthClient]:
    """Read a JSON list of client definitions."""
    entries = json.loads(path.read_text())
    return [
        OAuthClient(
            client_id=entry["client_id"],
            client_secret=entry["client_secret"],
            client_name=entry.get("name", entry["client_id"]),
            redirect_uris=list(entry.get("redirect_uris", [])),
            allowed_scopes=list(entry.get("allowed_scopes", ["openid"])),
            authorized_origins=list(entry.get("authorized_origins", [])),
        )
        for entry in entries
    ]


def seed_clients(store: CredentialStore, clients: list[OAuthClient]) -> int:
    """Insert clients that are not registered yet. Returns count created."""
    created = 0
    for client in clients:
        if store.get_client(client.client_id) is not None:
            continue
        store.insert_client(client)
        created += 1
        logger.info("Created client: %s", client.client_id)
    return created


def create_user(
    store: CredentialStore,
    passwords: PasswordVerifier,
    email: str,
    username: str,
    password: str,
    **fields,
) -> User:
    """Hash *password* and insert a new user."""
    if store.find_user_by_login(email) or store.find_user_by_login(username):
        raise ValueError("A user with this email or username already exists")
    user = User(
        email=email,
        username=username,
        password_hash=passwords.hash(password),
        **fields,
    )
    store.insert_user(user)
    logger.info("Created user %s (%s)", user.id, username)
    return user


def load_key(settings: Settings) -> SigningKey:
    if settings.private_key_path is not None:
        return load_signing_key(
            settings.private_key_path,
            settings.public_key_path,
            kid=settings.key_id,
        )
    if not settings.generate_keys:
        raise SigningError(
            "No private key configured. Set POCKETAUTH_PRIVATE_KEY_PATH "
            "or POCKETAUTH_GENERATE_KEYS=true."
        )
    logger.warning("No private key configured; generated an ephemeral RSA key pair")
    return generate_signing_key(kid=settings.key_id)


def build_server(settings: Settings) -> AuthorizationServer:
    """Wire store, signer and password verifier from settings."""
    from pocketauth.oauth2.server import AuthorizationServer

    store = open_store(settings.database_url)
    if settings.clients_file is not None:
        seed_clients(store, load_clients_file(settings.clients_file))

    signer = IdTokenSigner(load_key(settings), issuer=settings.issuer)
    passwords = PasswordVerifier(pepper=settings.password_pepper.get_secret_value())
    return AuthorizationServer(store, signer, passwords)
