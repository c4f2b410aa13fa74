# Tests for the authorization server engine.
# Created: 2026-02-20

import dataclasses
from datetime import timedelta

import pytest
from conftest import CHALLENGE, ISSUER, PASSWORD, REDIRECT_URI, VERIFIER, race

from pocketauth.oauth2.crypto import pkce_challenge
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
from pocketauth.oauth2.guard import AuthenticatedUser
from pocketauth.oauth2.models import AuthorizationCode, utcnow


def _expire(record):
    record.expires_at = utcnow() - timedelta(seconds=1)


# ===================== Authorization requests =====================


class TestValidateAuthorizeRequest:
    def _validate(self, server, **overrides):
        params = dict(
            client_id="web-app",
            redirect_uri=REDIRECT_URI,
            scope="openid profile",
            state="xyz",
            code_challenge=CHALLENGE,
        )
        params.update(overrides)
        return server.validate_authorize_request(**params)

    def test_valid_request(self, server):
        request = self._validate(server)
        assert request.client.client_id == "web-app"
        assert request.scope == "openid profile"
        assert request.code_challenge_method == "S256"

    def test_scope_defaults_to_openid(self, server):
        assert self._validate(server, scope="").scope == "openid"
        assert self._validate(server, scope=None).scope == "openid"

    def test_duplicate_scopes_collapsed(self, server):
        assert self._validate(server, scope="openid openid email").scope == "openid email"

    def test_scope_outside_allow_list(self, server):
        with pytest.raises(InvalidScope):
            self._validate(server, client_id="pool", scope="openid email")

    def test_unknown_client(self, server):
        with pytest.raises(UnauthorizedClient):
            self._validate(server, client_id="nope")

    def test_unregistered_redirect_uri(self, server):
        with pytest.raises(InvalidRequest):
            self._validate(server, redirect_uri="https://evil.example.com/cb")

    def test_plain_pkce_rejected(self, server):
        with pytest.raises(InvalidRequest):
            self._validate(server, code_challenge_method="plain")

    def test_missing_challenge(self, server):
        with pytest.raises(InvalidRequest):
            self._validate(server, code_challenge="")

    def test_missing_state(self, server):
        with pytest.raises(InvalidRequest):
            self._validate(server, state="")

    def test_unsupported_response_type(self, server):
        with pytest.raises(UnsupportedResponseType):
            self._validate(server, response_type="token")

    @pytest.mark.parametrize(
        "challenge",
        ["café" * 11, CHALLENGE[:-1], CHALLENGE + "A", CHALLENGE[:-1] + "=", CHALLENGE[:-1] + "+"],
    )
    def test_malformed_challenge(self, server, challenge):
        with pytest.raises(InvalidRequest):
            self._validate(server, code_challenge=challenge)


class TestAuthenticateUser:
    def test_login_by_username_or_email(self, server, alice):
        assert server.authenticate_user("alice", PASSWORD).id == alice.id
        assert server.authenticate_user("alice@example.com", PASSWORD).id == alice.id

    def test_wrong_password(self, server, alice):
        with pytest.raises(AccessDenied) as exc_info:
            server.authenticate_user("alice", "wrong")
        assert exc_info.value.description == "Invalid login or password."

    def test_unknown_login_same_error(self, server, alice):
        with pytest.raises(AccessDenied) as exc_info:
            server.authenticate_user("mallory", PASSWORD)
        assert exc_info.value.description == "Invalid login or password."

    def test_inactive_user_rejected(self, server, store, alice):
        store.update_user(dataclasses.replace(alice, is_active=False))
        with pytest.raises(AccessDenied):
            server.authenticate_user("alice", PASSWORD)

    def test_outdated_hash_is_upgraded(self, server, store, alice):
        from argon2 import PasswordHasher

        weak = PasswordHasher(time_cost=1, memory_cost=8192, parallelism=1)
        store.update_user(
            dataclasses.replace(alice, password_hash=weak.hash(PASSWORD + "test-pepper"))
        )

        server.authenticate_user("alice", PASSWORD)

        upgraded = store.get_user(alice.id).password_hash
        assert "m=15000,t=2,p=1" in upgraded
        assert server.authenticate_user("alice", PASSWORD).password_hash == upgraded


class TestIssueCode:
    def test_issue_code_records_login(self, server, store, issue_code, alice):
        code = issue_code(scope="openid")
        assert len(code) >= 43
        stored = store.get_code(code)
        assert stored.user_id == alice.id
        assert stored.client_id == "web-app"
        assert stored.code_challenge == CHALLENGE
        assert store.get_user(alice.id).last_login_at is not None

    def test_storage_failure_is_server_error(self, server, store, alice, monkeypatch):
        request = server.validate_authorize_request(
            client_id="web-app",
            redirect_uri=REDIRECT_URI,
            scope="openid",
            state="s1",
            code_challenge=CHALLENGE,
        )

        def _broken(code):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "insert_code", _broken)
        with pytest.raises(ServerError):
            server.issue_code(request, alice)


class TestClientAuthentication:
    def test_secret(self, server):
        assert server.authenticate_client(None, "web-app", "web-secret").client_id == "web-app"

    def test_storage_failure_is_server_error(self, server, store, monkeypatch):
        def _broken(client_id):
            raise StorageError("database is locked")

        monkeypatch.setattr(store, "get_client", _broken)
        with pytest.raises(ServerError):
            server.authenticate_client(None, "web-app", "web-secret")
        with pytest.raises(ServerError):
            server.authenticate_origin("web-app", {"Origin": "https://app.example.com"})


# ===================== Code exchange =====================


class TestExchange:
    def test_exchange_returns_token_set(self, server, issue_code):
        code = issue_code(scope="openid profile")
        result = server.exchange("web-app", code, REDIRECT_URI, VERIFIER)
        assert result["token_type"] == "Bearer"
        assert result["expires_in"] == 86400
        assert result["scope"] == "openid profile"
        assert result["access_token"] != result["refresh_token"]
        assert "id_token" in result

    def test_no_id_token_without_openid(self, tokens):
        result = tokens(scope="profile")
        assert "id_token" not in result

    def test_double_redemption(self, server, issue_code):
        code = issue_code()
        server.exchange("web-app", code, REDIRECT_URI, VERIFIER)
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", code, REDIRECT_URI, VERIFIER)

    def test_wrong_client(self, server, issue_code):
        code = issue_code()
        with pytest.raises(InvalidGrant):
            server.exchange("pool", code, REDIRECT_URI, VERIFIER)

    def test_wrong_redirect_uri(self, server, issue_code):
        code = issue_code()
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", code, "https://app.example.com/other", VERIFIER)

    def test_expired_code(self, server, store, issue_code):
        code = issue_code()
        _expire(store.get_code(code))
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", code, REDIRECT_URI, VERIFIER)

    def test_unknown_code(self, server):
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", "not-a-code", REDIRECT_URI, VERIFIER)

    def test_missing_parameters(self, server, issue_code):
        code = issue_code()
        with pytest.raises(InvalidRequest):
            server.exchange("web-app", code, REDIRECT_URI, "")
        with pytest.raises(InvalidRequest):
            server.exchange("web-app", "", REDIRECT_URI, VERIFIER)

    @pytest.mark.parametrize("position", [0, 10, 42])
    def test_mutated_verifier_fails(self, server, store, issue_code, position):
        code = issue_code()
        flipped = "A" if VERIFIER[position] != "A" else "B"
        mutated = VERIFIER[:position] + flipped + VERIFIER[position + 1 :]
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", code, REDIRECT_URI, mutated)
        # A failed check leaves the code redeemable
        assert store.get_code(code) is not None

    @pytest.mark.parametrize("position", [0, 21, 42])
    def test_mutated_challenge_fails(self, server, issue_code, position):
        flipped = "A" if CHALLENGE[position] != "A" else "B"
        code = issue_code(challenge=CHALLENGE[:position] + flipped + CHALLENGE[position + 1 :])
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", code, REDIRECT_URI, VERIFIER)

    def test_non_ascii_stored_challenge(self, server, store, alice):
        store.insert_code(
            AuthorizationCode(
                code="legacy",
                client_id="web-app",
                user_id=alice.id,
                redirect_uri=REDIRECT_URI,
                scopes="openid",
                code_challenge="café" * 11,
            )
        )
        with pytest.raises(InvalidGrant):
            server.exchange("web-app", "legacy", REDIRECT_URI, VERIFIER)

    def test_fresh_pkce_pairs(self, server, issue_code):
        for verifier in ("a" * 43, "Z9-._~" * 10, "x" * 128):
            code = issue_code(challenge=pkce_challenge(verifier))
            assert server.exchange("web-app", code, REDIRECT_URI, verifier)["access_token"]

    def test_missing_user_is_server_error(self, server, store, issue_code, alice):
        code = issue_code()
        del store._users[alice.id]
        with pytest.raises(ServerError):
            server.exchange("web-app", code, REDIRECT_URI, VERIFIER)

    def test_signing_failure_rolls_back(self, server, store, issue_code, monkeypatch):
        code = issue_code(scope="openid")

        def _fail(*args, **kwargs):
            raise SigningError("boom")

        monkeypatch.setattr(server.signer, "sign", _fail)
        with pytest.raises(ServerError):
            server.exchange("web-app", code, REDIRECT_URI, VERIFIER)
        assert store.get_code(code) is not None
        assert store._access == {}
        assert store._refresh == {}


class TestIdToken:
    def test_profile_scope_claims(self, server, tokens, alice):
        claims = server.signer.verify(tokens(scope="openid profile")["id_token"], "web-app")
        assert claims["sub"] == alice.id
        assert claims["iss"] == ISSUER
        assert claims["aud"] == "web-app"
        assert claims["exp"] - claims["iat"] == 3600
        assert claims["username"] == "alice"
        assert claims["country"] == "SE"
        assert "email" not in claims

    def test_email_scope_claims(self, server, tokens):
        claims = server.signer.verify(tokens(scope="openid email")["id_token"], "web-app")
        assert claims["email"] == "alice@example.com"
        assert "username" not in claims

    def test_openid_only(self, server, tokens):
        claims = server.signer.verify(tokens(scope="openid")["id_token"], "web-app")
        assert set(claims) == {"sub", "iss", "aud", "iat", "exp"}

    def test_header_has_kid(self, tokens):
        import jwt

        header = jwt.get_unverified_header(tokens()["id_token"])
        assert header["alg"] == "RS256"
        assert header["kid"] == "main"


# ===================== Refresh rotation =====================


class TestRefresh:
    def test_rotation_invalidates_old_pair(self, server, tokens):
        first = tokens()
        second = server.refresh("web-app", first["refresh_token"])

        assert server.verify_access_token(first["access_token"]) is None
        assert server.store.get_refresh_token(first["refresh_token"]) is None
        assert server.verify_access_token(second["access_token"]) is not None
        assert server.store.get_refresh_token(second["refresh_token"]) is not None
        assert second["scope"] == first["scope"]
        assert "id_token" in second

    def test_rotated_token_cannot_be_reused(self, server, tokens):
        first = tokens()
        server.refresh("web-app", first["refresh_token"])
        with pytest.raises(InvalidGrant):
            server.refresh("web-app", first["refresh_token"])

    def test_wrong_client(self, server, store, tokens):
        first = tokens()
        with pytest.raises(InvalidGrant):
            server.refresh("pool", first["refresh_token"])
        # Untouched on failure
        assert store.get_refresh_token(first["refresh_token"]) is not None
        assert store.get_access_token(first["access_token"]) is not None

    def test_expired_refresh_token(self, server, store, tokens):
        first = tokens()
        _expire(store.get_refresh_token(first["refresh_token"]))
        with pytest.raises(InvalidGrant):
            server.refresh("web-app", first["refresh_token"])

    def test_missing_refresh_token(self, server):
        with pytest.raises(InvalidRequest):
            server.refresh("web-app", "")

    def test_deleted_user_is_server_error(self, server, store, tokens, alice):
        first = tokens()
        del store._users[alice.id]
        with pytest.raises(ServerError):
            server.refresh("web-app", first["refresh_token"])
        assert store.get_refresh_token(first["refresh_token"]) is not None


class TestConcurrentRedemption:
    def test_code_redeemed_once(self, server, store, issue_code):
        code = issue_code()
        results, errors = race(server.exchange, "web-app", code, REDIRECT_URI, VERIFIER)

        assert len(results) == 1
        assert errors == ["invalid_grant"] * 7
        assert store.get_access_token(results[0]["access_token"]) is not None
        assert len(store._access) == 1

    def test_refresh_token_rotated_once(self, server, store, tokens):
        first = tokens()
        results, errors = race(server.refresh, "web-app", first["refresh_token"])

        assert len(results) == 1
        assert errors == ["invalid_grant"] * 7
        assert store.get_refresh_token(results[0]["refresh_token"]) is not None
        assert len(store._refresh) == 1


class TestTokenDispatch:
    def test_missing_grant_type(self, server, store):
        with pytest.raises(InvalidRequest):
            server.token(None, store.get_client("web-app"))

    def test_unknown_grant_type(self, server, store):
        with pytest.raises(UnsupportedGrantType):
            server.token("password", store.get_client("web-app"))

    def test_refresh_grant(self, server, store, tokens):
        first = tokens()
        result = server.token(
            "refresh_token", store.get_client("web-app"), refresh_token=first["refresh_token"]
        )
        assert result["access_token"] != first["access_token"]


# ===================== Revocation =====================


class TestRevoke:
    def test_revoke_access_token_cascades(self, server, store, tokens):
        result = tokens()
        assert server.revoke("web-app", result["access_token"]) is True
        assert store.get_access_token(result["access_token"]) is None
        assert store.get_refresh_token(result["refresh_token"]) is None

    def test_revoke_refresh_token_cascades(self, server, store, tokens):
        result = tokens()
        assert server.revoke("web-app", result["refresh_token"]) is True
        assert store.get_access_token(result["access_token"]) is None
        assert store.get_refresh_token(result["refresh_token"]) is None

    def test_foreign_token_is_noop(self, server, store, tokens):
        result = tokens()
        assert server.revoke("pool", result["access_token"]) is False
        assert store.get_access_token(result["access_token"]) is not None
        assert store.get_refresh_token(result["refresh_token"]) is not None

    def test_unknown_token(self, server):
        assert server.revoke("web-app", "never-issued") is False

    def test_expired_token_still_revocable(self, server, store, tokens):
        result = tokens()
        _expire(store.get_access_token(result["access_token"]))
        assert server.revoke("web-app", result["access_token"]) is True
        assert store.get_refresh_token(result["refresh_token"]) is None

    def test_missing_token(self, server):
        with pytest.raises(InvalidRequest):
            server.revoke("web-app", "")


# ===================== Profile updates =====================


def _caller(store, user, scope="openid"):
    from pocketauth.oauth2.models import AccessToken

    token = AccessToken(token=f"tok-{user.id}", client_id="web-app", user_id=user.id, scopes=scope)
    store.insert_access_token(token)
    return AuthenticatedUser(user=store.get_user(user.id), access_token=token)


class TestUpdateProfile:
    def test_self_update(self, server, store, alice):
        caller = _caller(store, alice)
        updated = server.update_profile(caller, alice.id, {"bio": "new bio", "country": "NO"})
        assert updated.bio == "new bio"
        assert store.get_user(alice.id).country == "NO"
        assert updated.updated_at >= alice.updated_at

    def test_self_cannot_grant_admin(self, server, store, alice):
        caller = _caller(store, alice)
        updated = server.update_profile(caller, alice.id, {"is_admin": True, "bio": "x"})
        assert updated.is_admin is False
        assert updated.bio == "x"

    def test_other_user_forbidden(self, server, store, alice, bob):
        caller = _caller(store, alice)
        with pytest.raises(Forbidden):
            server.update_profile(caller, bob.id, {"bio": "hacked"})

    def test_admin_updates_anyone(self, server, store, admin, bob):
        caller = _caller(store, admin)
        updated = server.update_profile(caller, bob.id, {"is_moderator": True, "is_active": False})
        assert updated.is_moderator is True
        assert store.get_user(bob.id).is_active is False

    def test_admin_unknown_user(self, server, store, admin):
        caller = _caller(store, admin)
        with pytest.raises(NotFound):
            server.update_profile(caller, "missing", {"bio": "x"})

    def test_username_conflict(self, server, store, alice, bob):
        caller = _caller(store, alice)
        with pytest.raises(InvalidRequest):
            server.update_profile(caller, alice.id, {"username": "bob"})
        assert store.get_user(alice.id).username == "alice"
