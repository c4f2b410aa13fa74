"""Configuration for pocketauth.

Settings come from ``POCKETAUTH_*`` environment variables or a ``.env`` file.
Credential lifetimes are fixed in :mod:`pocketauth.oauth2.models` and are
deliberately not part of this object.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings."""

    model_config = SettingsConfigDict(
        env_prefix="POCKETAUTH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Identity
    issuer: str = Field(default="http://localhost:3001", description="iss claim of ID tokens")

    # Storage: a SQLAlchemy URL, or memory:// for a process-local store
    database_url: str = "sqlite:///./pocketauth.db"
    clients_file: Path | None = Field(
        default=None, description="JSON list of clients seeded at startup"
    )

    # Keys
    private_key_path: Path | None = None
    public_key_path: Path | None = None
    key_id: str = "main"
    generate_keys: bool = Field(
        default=True, description="Generate an in-memory key pair when no PEM is configured"
    )

    # Passwords
    password_pepper: SecretStr = SecretStr("")

    # Browser-facing flow
    enforce_origin: bool = False
    csrf_ttl_seconds: float = 15 * 60.0

    # Server
    web_host: str = "127.0.0.1"
    web_port: int = 3001
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> Settings:
        return cls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.load()
