"""Auth endpoints: register, login, OAuth2 token, current user."""

import sqlite3

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from smartpromptiq.config.pricing import get_tier
from smartpromptiq.core.security import create_access_token, hash_password, verify_password
from smartpromptiq.core.token_manager import next_reset_date
from smartpromptiq.db import users_repository
from smartpromptiq.db.database import to_db_timestamp
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.web.deps import current_user
from smartpromptiq.web.schemas import LoginRequest, RegisterRequest, TokenResponse, UserResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse.model_validate(user)


def _token_response(user: UserRecord) -> TokenResponse:
    token = create_access_token(user.user_id, {"email": user.email, "role": user.role})
    return TokenResponse(access_token=token, user=_user_response(user))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest) -> TokenResponse:
    """Create a free-tier account with the free monthly allowance."""
    free = get_tier("free")
    try:
        user = users_repository.create_user(
            email=request.email,
            password_hash=hash_password(request.password),
            first_name=request.first_name,
            last_name=request.last_name,
            subscription_tier=free.id,
            token_balance=free.tokens_per_month,
            monthly_reset_date=to_db_timestamp(next_reset_date()),
        )
    except sqlite3.IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists",
        )

    logger.info("user_registered", user_id=user.user_id)
    return _token_response(user)


def _authenticate(email: str, password: str) -> UserRecord:
    user = users_repository.get_user_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login_failed", email=email.strip().lower())
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")

    return user


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest) -> TokenResponse:
    """Exchange email and password for an access token."""
    return _token_response(_authenticate(request.email, request.password))


@router.post("/token", response_model=TokenResponse)
async def token(form_data: OAuth2PasswordRequestForm = Depends()) -> TokenResponse:
    """OAuth2 password flow for the interactive docs. username is the email."""
    return _token_response(_authenticate(form_data.username, form_data.password))


@router.get("/me", response_model=UserResponse)
async def me(user: UserRecord = Depends(current_user)) -> UserResponse:
    """The authenticated user."""
    return _user_response(user)
