"""Session and re-authentication tokens, password hashing and FastAPI guards.

A session token (long-lived) identifies the caller and their role. Mutating
lifecycle calls additionally need a short-lived re-authentication token,
obtained by re-entering the account password, in the ``X-Reauth-Token``
header.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt

from launch_control.config.schema import AuthConfig, UserConfig

PBKDF2_ITERATIONS = 240_000
REAUTH_PURPOSE = "reauth"
MUTATING_ROLES = ("operator", "admin")
ALL_ROLES = ("viewer", "operator", "admin")


def hash_password(password: str, salt: bytes | None = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "$".join(
        [
            "pbkdf2_sha256",
            str(iterations),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt_b64, digest_b64 = encoded.split("$")
        if scheme != "pbkdf2_sha256":
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(digest_b64)
        rounds = int(iterations)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(digest, expected)


@dataclass(frozen=True)
class Principal:
    username: str
    role: str


class TokenService:
    """Issues and verifies session and re-auth JWTs."""

    def __init__(self, config: AuthConfig) -> None:
        self._config = config
        self._users = {user.username: user for user in config.users}

    @property
    def reauth_ttl_seconds(self) -> int:
        return self._config.reauth_ttl_minutes * 60

    def authenticate(self, username: str, password: str) -> UserConfig | None:
        user = self._users.get(username)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    def issue_session(self, user: UserConfig) -> str:
        now = int(time.time())
        claims = {
            "sub": user.username,
            "role": user.role,
            "iat": now,
            "exp": now + self._config.session_ttl_minutes * 60,
        }
        return jwt.encode(claims, self._config.jwt_secret, algorithm=self._config.algorithm)

    def issue_reauth(self, principal: Principal) -> str:
        now = int(time.time())
        claims = {
            "sub": principal.username,
            "purpose": REAUTH_PURPOSE,
            "iat": now,
            "exp": now + self.reauth_ttl_seconds,
        }
        return jwt.encode(claims, self._config.reauth_secret, algorithm=self._config.algorithm)

    def decode_session(self, token: str) -> Principal:
        try:
            claims = jwt.decode(token, self._config.jwt_secret, algorithms=[self._config.algorithm])
        except JWTError as e:
            raise HTTPException(status_code=401, detail="Invalid token") from e
        user = self._users.get(claims.get("sub", ""))
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return Principal(username=user.username, role=user.role)

    def check_reauth(self, token: str, principal: Principal) -> None:
        try:
            claims = jwt.decode(token, self._config.reauth_secret, algorithms=[self._config.algorithm])
        except JWTError as e:
            raise HTTPException(status_code=401, detail="Reauth token invalid") from e
        if claims.get("purpose") != REAUTH_PURPOSE or claims.get("sub") != principal.username:
            raise HTTPException(status_code=401, detail="Reauth token invalid")


def _tokens(request: Request) -> TokenService:
    return request.app.state.tokens


def current_principal(
    request: Request, authorization: str | None = Header(default=None)
) -> Principal:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return _tokens(request).decode_session(authorization[len("Bearer "):])


def require_roles(*roles: str):
    """Dependency factory: the caller's role must be one of ``roles``."""

    def dependency(principal: Principal = Depends(current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return dependency


def require_operator_reauth(
    request: Request,
    principal: Principal = Depends(require_roles(*MUTATING_ROLES)),
    x_reauth_token: str | None = Header(default=None),
) -> Principal:
    """Guard for lifecycle mutations: operator/admin role plus a fresh re-auth token."""
    if not x_reauth_token:
        raise HTTPException(status_code=401, detail="Reauth required")
    _tokens(request).check_reauth(x_reauth_token, principal)
    return principal
