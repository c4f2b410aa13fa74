# SQLAlchemy-backed credential store.
# Created: 2026-10-19
#
# Same contract as InMemoryCredentialStore. Each transaction() is one
# database transaction; deletes report affected row counts so the engine can
# detect a concurrent redemption that already consumed a row.

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, String, Text, create_engine, delete, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from pocketauth.oauth2.errors import StorageError
from pocketauth.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ClientRow(Base):
    __tablename__ = "clients"

    client_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    client_secret: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # JSON arrays
    redirect_uris: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    allowed_scopes: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    authorized_origins: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_moderator: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_member: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuthCodeRow(Base):
    __tablename__ = "auth_codes"

    code: Mapped[str] = mapped_column(String(255), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    code_challenge: Mapped[str] = mapped_column(String(255), nullable=False)
    code_challenge_method: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AccessTokenRow(Base):
    __tablename__ = "access_tokens"

    token: Mapped[str] = mapped_column(String(255), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RefreshTokenRow(Base):
    __tablename__ = "refresh_tokens"

    token: Mapped[str] = mapped_column(String(255), primary_key=True)
    access_token: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _client(row: ClientRow) -> OAuthClient:
    return OAuthClient(
        client_id=row.client_id,
        client_secret=row.client_secret,
        client_name=row.name,
        redirect_uris=json.loads(row.redirect_uris),
        allowed_scopes=json.loads(row.allowed_scopes),
        authorized_origins=json.loads(row.authorized_origins),
        created_at=_aware(row.created_at),
    )


_USER_FIELDS = (
    "id",
    "email",
    "username",
    "password_hash",
    "country",
    "avatar_url",
    "bio",
    "is_admin",
    "is_moderator",
    "is_member",
    "is_active",
    "is_verified",
)


def _user(row: UserRow) -> User:
    fields = {name: getattr(row, name) for name in _USER_FIELDS}
    return User(
        **fields,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        last_login_at=_aware(row.last_login_at),
    )


def _user_values(user: User) -> dict:
    values = {name: getattr(user, name) for name in _USER_FIELDS}
    values.update(
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login_at=user.last_login_at,
    )
    return values


class SQLRepository:
    """CredentialRepository bound to one SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def get_client(self, client_id: str) -> OAuthClient | None:
        row = self.session.get(ClientRow, client_id)
        return _client(row) if row else None

    def get_user(self, user_id: str) -> User | None:
        row = self.session.get(UserRow, user_id)
        return _user(row) if row else None

    def find_user_by_login(self, login: str) -> User | None:
        row = self.session.scalars(
            select(UserRow).where(or_(UserRow.username == login, UserRow.email == login))
        ).first()
        return _user(row) if row else None

    def find_user_conflict(self, user_id: str, email: str, username: str) -> User | None:
        row = self.session.scalars(
            select(UserRow).where(
                UserRow.id != user_id,
                or_(UserRow.email == email, UserRow.username == username),
            )
        ).first()
        return _user(row) if row else None

    def update_user(self, user: User) -> None:
        row = self.session.get(UserRow, user.id)
        if row is None:
            raise StorageError(f"User {user.id} does not exist")
        for name, value in _user_values(user).items():
            setattr(row, name, value)

    def insert_code(self, code: AuthorizationCode) -> None:
        self.session.add(
            AuthCodeRow(
                code=code.code,
                client_id=code.client_id,
                user_id=code.user_id,
                redirect_uri=code.redirect_uri,
                scopes=code.scopes,
                code_challenge=code.code_challenge,
                code_challenge_method=code.code_challenge_method,
                expires_at=code.expires_at,
                created_at=code.created_at,
            )
        )
        self.session.flush()

    def get_code(self, code: str, include_expired: bool = False) -> AuthorizationCode | None:
        row = self.session.get(AuthCodeRow, code)
        if row is None:
            return None
        record = AuthorizationCode(
            code=row.code,
            client_id=row.client_id,
            user_id=row.user_id,
            redirect_uri=row.redirect_uri,
            scopes=row.scopes,
            code_challenge=row.code_challenge,
            code_challenge_method=row.code_challenge_method,
            created_at=_aware(row.created_at),
            expires_at=_aware(row.expires_at),
        )
        if not include_expired and record.is_expired():
            return None
        return record

    def delete_code(self, code: str) -> bool:
        result = self.session.execute(delete(AuthCodeRow).where(AuthCodeRow.code == code))
        return result.rowcount == 1

    def insert_access_token(self, token: AccessToken) -> None:
        self.session.add(
            AccessTokenRow(
                token=token.token,
                client_id=token.client_id,
                user_id=token.user_id,
                scopes=token.scopes,
                expires_at=token.expires_at,
                created_at=token.created_at,
            )
        )
        self.session.flush()

    def get_access_token(self, token: str, include_expired: bool = False) -> AccessToken | None:
        row = self.session.get(AccessTokenRow, token)
        if row is None:
            return None
        record = AccessToken(
            token=row.token,
            client_id=row.client_id,
            user_id=row.user_id,
            scopes=row.scopes,
            created_at=_aware(row.created_at),
            expires_at=_aware(row.expires_at),
        )
        if not include_expired and record.is_expired():
            return None
        return record

    def delete_access_token(self, token: str) -> bool:
        result = self.session.execute(delete(AccessTokenRow).where(AccessTokenRow.token == token))
        return result.rowcount == 1

    def insert_refresh_token(self, token: RefreshToken) -> None:
        self.session.add(
            RefreshTokenRow(
                token=token.token,
                access_token=token.access_token,
                client_id=token.client_id,
                user_id=token.user_id,
                scopes=token.scopes,
                expires_at=token.expires_at,
                created_at=token.created_at,
            )
        )
        self.session.flush()

    def get_refresh_token(self, token: str, include_expired: bool = False) -> RefreshToken | None:
        row = self.session.get(RefreshTokenRow, token)
        if row is None:
            return None
        record = RefreshToken(
            token=row.token,
            access_token=row.access_token,
            client_id=row.client_id,
            user_id=row.user_id,
            scopes=row.scopes,
            created_at=_aware(row.created_at),
            expires_at=_aware(row.expires_at),
        )
        if not include_expired and record.is_expired():
            return None
        return record

    def delete_refresh_token(self, token: str) -> bool:
        result = self.session.execute(delete(RefreshTokenRow).where(RefreshTokenRow.token == token))
        return result.rowcount == 1

    def delete_refresh_tokens_for(self, access_token: str) -> int:
        result = self.session.execute(
            delete(RefreshTokenRow).where(RefreshTokenRow.access_token == access_token)
        )
        return result.rowcount


class SQLCredentialStore:
    """CredentialStore over a SQLAlchemy engine (SQLite, PostgreSQL, ...)."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, create_schema: bool = True) -> SQLCredentialStore:
        kwargs: dict = {}
        if database_url.startswith("sqlite"):
            # Concurrent writers wait on the database lock instead of failing fast
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        store = cls(create_engine(database_url, **kwargs))
        if create_schema:
            store.create_schema()
        return store

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to create schema: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[SQLRepository]:
        session = self._sessions()
        try:
            with session.begin():
                yield SQLRepository(session)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            session.close()

    # Single-statement operations run in their own short transaction.

    def insert_client(self, client: OAuthClient) -> None:
        with self.transaction() as repo:
            repo.session.add(
                ClientRow(
                    client_id=client.client_id,
                    client_secret=client.client_secret,
                    name=client.client_name,
                    redirect_uris=json.dumps(client.redirect_uris),
                    allowed_scopes=json.dumps(client.allowed_scopes),
                    authorized_origins=json.dumps(client.authorized_origins),
                    created_at=client.created_at,
                )
            )

    def insert_user(self, user: User) -> None:
        with self.transaction() as repo:
            repo.session.add(UserRow(**_user_values(user)))

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self.transaction() as repo:
            return repo.get_client(client_id)

    def get_user(self, user_id: str) -> User | None:
        with self.transaction() as repo:
            return repo.get_user(user_id)

    def find_user_by_login(self, login: str) -> User | None:
        with self.transaction() as repo:
            return repo.find_user_by_login(login)

    def find_user_conflict(self, user_id: str, email: str, username: str) -> User | None:
        with self.transaction() as repo:
            return repo.find_user_conflict(user_id, email, username)

    def update_user(self, user: User) -> None:
        with self.transaction() as repo:
            repo.update_user(user)

    def insert_code(self, code: AuthorizationCode) -> None:
        with self.transaction() as repo:
            repo.insert_code(code)

    def get_code(self, code: str, include_expired: bool = False) -> AuthorizationCode | None:
        with self.transaction() as repo:
            return repo.get_code(code, include_expired)

    def delete_code(self, code: str) -> bool:
        with self.transaction() as repo:
            return repo.delete_code(code)

    def insert_access_token(self, token: AccessToken) -> None:
        with self.transaction() as repo:
            repo.insert_access_token(token)

    def get_access_token(self, token: str, include_expired: bool = False) -> AccessToken | None:
        with self.transaction() as repo:
            return repo.get_access_token(token, include_expired)

    def delete_access_token(self, token: str) -> bool:
        with self.transaction() as repo:
            return repo.delete_access_token(token)

    def insert_refresh_token(self, token: RefreshToken) -> None:
        with self.transaction() as repo:
            repo.insert_refresh_token(token)

    def get_refresh_token(self, token: str, include_expired: bool = False) -> RefreshToken | None:
        with self.transaction() as repo:
            return repo.get_refresh_token(token, include_expired)

    def delete_refresh_token(self, token: str) -> bool:
        with self.transaction() as repo:
            return repo.delete_refresh_token(token)

    def delete_refresh_tokens_for(self, access_token: str) -> int:
        with self.transaction() as repo:
            return repo.delete_refresh_tokens_for(access_token)

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        removed = 0
        with self.transaction() as repo:
            for table in (AuthCodeRow, AccessTokenRow, RefreshTokenRow):
                result = repo.session.execute(delete(table).where(table.expires_at <= now))
                removed += result.rowcount
        if removed:
            logger.info("Purged %d expired credential rows", removed)
        return removed
