"""Tests for password hashing and JWT session / re-auth tokens."""

import time

import pytest
from fastapi import HTTPException
from jose import jwt

from launch_control.api.auth import Principal, TokenService, hash_password, verify_password
from launch_control.config.schema import AuthConfig, UserConfig


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        jwt_secret="session-secret",
        reauth_secret="reauth-secret",
        users=[
            UserConfig(username="alice", role="admin", password_hash=hash_password("wonderland", iterations=1000)),
            UserConfig(username="victor", role="viewer", password_hash=hash_password("peek", iterations=1000)),
        ],
    )


class TestPasswordHashing:
    def test_roundtrip(self):
        encoded = hash_password("s3cret", iterations=1000)
        assert encoded.startswith("pbkdf2_sha256$1000$")
        assert verify_password("s3cret", encoded)
        assert not verify_password("wrong", encoded)

    def test_salted(self):
        assert hash_password("x", iterations=1000) != hash_password("x", iterations=1000)

    def test_malformed_hash(self):
        assert not verify_password("x", "not-a-hash")
        assert not verify_password("x", "md5$1$a$b")


class TestTokenService:
    def test_authenticate(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        assert tokens.authenticate("alice", "wonderland").role == "admin"
        assert tokens.authenticate("alice", "nope") is None
        assert tokens.authenticate("mallory", "wonderland") is None

    def test_session_roundtrip(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        token = tokens.issue_session(tokens.authenticate("alice", "wonderland"))
        assert tokens.decode_session(token) == Principal(username="alice", role="admin")

    def test_session_lifetime(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        token = tokens.issue_session(tokens.authenticate("alice", "wonderland"))
        claims = jwt.decode(token, "session-secret", algorithms=["HS256"])
        assert claims["exp"] - claims["iat"] == 720 * 60

    def test_expired_session_rejected(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        past = int(time.time()) - 3600
        token = jwt.encode({"sub": "alice", "role": "admin", "iat": past, "exp": past + 60}, "session-secret")
        with pytest.raises(HTTPException) as exc_info:
            tokens.decode_session(token)
        assert exc_info.value.status_code == 401

    def test_session_for_removed_user_rejected(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        token = jwt.encode({"sub": "ghost", "exp": int(time.time()) + 60}, "session-secret")
        with pytest.raises(HTTPException, match="Invalid token"):
            tokens.decode_session(token)

    def test_reauth_token_cannot_be_used_as_session(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        reauth = tokens.issue_reauth(Principal("alice", "admin"))
        with pytest.raises(HTTPException):
            tokens.decode_session(reauth)

    def test_reauth_roundtrip(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        alice = Principal("alice", "admin")
        tokens.check_reauth(tokens.issue_reauth(alice), alice)
        assert tokens.reauth_ttl_seconds == 600

    def test_reauth_bound_to_user(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        token = tokens.issue_reauth(Principal("alice", "admin"))
        with pytest.raises(HTTPException, match="Reauth token invalid"):
            tokens.check_reauth(token, Principal("victor", "viewer"))

    def test_session_token_is_not_a_reauth_token(self, auth_config: AuthConfig):
        tokens = TokenService(auth_config)
        session = tokens.issue_session(tokens.authenticate("alice", "wonderland"))
        with pytest.raises(HTTPException):
            tokens.check_reauth(session, Principal("alice", "admin"))
