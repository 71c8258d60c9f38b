"""Password hashing and JWT access tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from jose import JWTError, jwt
from passlib.context import CryptContext

from smartpromptiq.config.app_config import load_app_config

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class AuthError(Exception):
    """Invalid credentials or token."""

    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    subject: str,
    extra_claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a JWT for a user.

    Args:
        subject: User ID, stored in "sub"
        extra_claims: Additional claims (email, role)
        expires_delta: Lifetime; defaults to the configured minutes
    """
    auth = load_app_config().auth
    if expires_delta is None:
        expires_delta = timedelta(minutes=auth.access_token_expire_minutes)

    claims: dict[str, Any] = dict(extra_claims or {})
    claims["sub"] = subject
    claims["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(claims, auth.get_secret_key(), algorithm=auth.algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a JWT and return its claims.

    Raises:
        AuthError: If the token is invalid, expired or has no subject
    """
    auth = load_app_config().auth
    try:
        payload = jwt.decode(token, auth.get_secret_key(), algorithms=[auth.algorithm])
    except JWTError as e:
        logger.debug("token_rejected", error=str(e))
        raise AuthError("Could not validate credentials") from e

    if not payload.get("sub"):
        raise AuthError("Could not validate credentials")
    return payload
