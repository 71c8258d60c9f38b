"""Request dependencies: authenticated user and LLM client."""

from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from smartpromptiq.core.security import AuthError, decode_access_token
from smartpromptiq.db.users_repository import UserRecord, get_user_by_id
from smartpromptiq.llm.client import LLMClient

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _resolve_user(credentials: HTTPAuthorizationCredentials | None) -> UserRecord | None:
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
    except AuthError as e:
        raise _unauthorized(str(e)) from e

    user = get_user_by_id(payload["sub"])
    if user is None:
        raise _unauthorized("User no longer exists")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")
    return user


async def optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserRecord | None:
    """The caller if a valid token was sent, else None."""
    return _resolve_user(credentials)


async def current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserRecord:
    """The authenticated caller (401 without a token)."""
    user = _resolve_user(credentials)
    if user is None:
        raise _unauthorized("Not authenticated")
    return user


async def admin_user(user: UserRecord = Depends(current_user)) -> UserRecord:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_llm_client() -> LLMClient | None:
    """LLM client for generation routes.

    None lets the generator try the configured providers in order.
    """
    return None
