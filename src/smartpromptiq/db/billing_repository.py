"""Repository functions for checkout_sessions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog

from smartpromptiq.db.database import get_db, to_db_timestamp

logger = structlog.get_logger(__name__)


@dataclass
class CheckoutSessionRecord:
    """Checkout session record from database."""

    session_id: str
    user_id: str
    package_key: str
    tokens: int
    price_in_cents: int
    status: str
    transaction_id: int | None
    created_at: str
    completed_at: str | None


def create_session(
    user_id: str, package_key: str, tokens: int, price_in_cents: int
) -> CheckoutSessionRecord:
    """Insert a pending checkout session."""
    session_id = f"cs_{uuid.uuid4().hex}"
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO checkout_sessions (session_id, user_id, package_key, tokens, price_in_cents)
            VALUES (?, ?, ?, ?, ?)
            """,
            (session_id, user_id, package_key, tokens, price_in_cents),
        )
        row = conn.execute(
            "SELECT * FROM checkout_sessions WHERE session_id = ?", (session_id,)
        ).fetchone()

    logger.debug("checkout.created", session_id=session_id, package=package_key)
    return _row_to_record(row)


def get_session(session_id: str) -> CheckoutSessionRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM checkout_sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
    return _row_to_record(row) if row is not None else None


def claim_session(session_id: str) -> bool:
    """Move a pending session to completed.

    Returns:
        True if this call completed it, False if it was not pending
    """
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE checkout_sessions
            SET status = 'completed', completed_at = ?
            WHERE session_id = ? AND status = 'pending'
            """,
            (to_db_timestamp(), session_id),
        )
    return cursor.rowcount > 0


def attach_transaction(session_id: str, transaction_id: int) -> None:
    with get_db() as conn:
        conn.execute(
            "UPDATE checkout_sessions SET transaction_id = ? WHERE session_id = ?",
            (transaction_id, session_id),
        )


def release_session(session_id: str) -> None:
    """Return a claimed session to pending."""
    with get_db() as conn:
        conn.execute(
            """
            UPDATE checkout_sessions
            SET status = 'pending', completed_at = NULL
            WHERE session_id = ?
            """,
            (session_id,),
        )


def _row_to_record(row) -> CheckoutSessionRecord:
    """Convert database row to CheckoutSessionRecord."""
    return CheckoutSessionRecord(
        session_id=row["session_id"],
        user_id=row["user_id"],
        package_key=row["package_key"],
        tokens=row["tokens"],
        price_in_cents=row["price_in_cents"],
        status=row["status"],
        transaction_id=row["transaction_id"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )
