"""Repository functions for the users table."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog

from smartpromptiq.db.database import get_db

logger = structlog.get_logger(__name__)


@dataclass
class UserRecord:
    """User record from database."""

    user_id: str
    email: str
    password_hash: str
    first_name: str | None
    last_name: str | None
    role: str
    subscription_tier: str
    subscription_status: str
    is_active: bool
    token_balance: int
    tokens_used: int
    tokens_purchased: int
    monthly_tokens_used: int
    monthly_reset_date: str | None
    last_token_purchase: str | None
    created_at: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


def create_user(
    email: str,
    password_hash: str,
    first_name: str | None = None,
    last_name: str | None = None,
    role: str = "user",
    subscription_tier: str = "free",
    token_balance: int = 0,
    monthly_reset_date: str | None = None,
) -> UserRecord:
    """Insert a new user.

    Args:
        email: Unique login email (stored lowercase)
        password_hash: passlib hash
        first_name: Optional first name
        last_name: Optional last name
        role: 'user' or 'admin'
        subscription_tier: Tier id from the pricing catalog
        token_balance: Starting balance
        monthly_reset_date: Next monthly reset timestamp

    Returns:
        The created UserRecord

    Raises:
        sqlite3.IntegrityError: If the email is already registered
    """
    user_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO users (
                user_id, email, password_hash, first_name, last_name,
                role, subscription_tier, token_balance, monthly_reset_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                email.strip().lower(),
                password_hash,
                first_name,
                last_name,
                role,
                subscription_tier,
                token_balance,
                monthly_reset_date,
            ),
        )
        row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()

    logger.debug("users.inserted", user_id=user_id, tier=subscription_tier)
    return _row_to_record(row)


def get_user_by_id(user_id: str) -> UserRecord | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    return _row_to_record(row) if row is not None else None


def get_user_by_email(email: str) -> UserRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
    return _row_to_record(row) if row is not None else None


def list_users(due_for_reset_before: str | None = None) -> list[UserRecord]:
    """List users, optionally only paid active ones whose monthly reset is due.

    Args:
        due_for_reset_before: Timestamp; when set, only users with
            monthly_reset_date <= this value on a non-free active plan
    """
    with get_db() as conn:
        if due_for_reset_before is None:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        else:
            rows = conn.execute(
                """
                SELECT * FROM users
                WHERE subscription_tier != 'free'
                  AND subscription_status = 'active'
                  AND monthly_reset_date IS NOT NULL
                  AND monthly_reset_date <= ?
                ORDER BY created_at
                """,
                (due_for_reset_before,),
            ).fetchall()
    return [_row_to_record(row) for row in rows]


def set_active(user_id: str, is_active: bool) -> None:
    with get_db() as conn:
        conn.execute(
            "UPDATE users SET is_active = ? WHERE user_id = ?",
            (1 if is_active else 0, user_id),
        )


def reset_monthly_usage(user_id: str, next_reset_date: str) -> None:
    """Zero the monthly counter and schedule the next reset."""
    with get_db() as conn:
        conn.execute(
            "UPDATE users SET monthly_tokens_used = 0, monthly_reset_date = ? WHERE user_id = ?",
            (next_reset_date, user_id),
        )

    logger.debug("users.monthly_reset", user_id=user_id, next_reset=next_reset_date)


def _row_to_record(row) -> UserRecord:
    """Convert database row to UserRecord."""
    return UserRecord(
        user_id=row["user_id"],
        email=row["email"],
        password_hash=row["password_hash"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        role=row["role"],
        subscription_tier=row["subscription_tier"],
        subscription_status=row["subscription_status"],
        is_active=bool(row["is_active"]),
        token_balance=row["token_balance"],
        tokens_used=row["tokens_used"],
        tokens_purchased=row["tokens_purchased"],
        monthly_tokens_used=row["monthly_tokens_used"],
        monthly_reset_date=row["monthly_reset_date"],
        last_token_purchase=row["last_token_purchase"],
        created_at=row["created_at"],
    )
