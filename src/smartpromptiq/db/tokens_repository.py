"""Repository functions for the token_transactions ledger.

Every balance change goes through apply_transaction, which writes the
ledger row and updates the user's counters in one database transaction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from smartpromptiq.db.database import get_db, to_db_timestamp

logger = structlog.get_logger(__name__)

TRANSACTION_TYPES = ("usage", "purchase", "bonus", "rollover", "refund", "expiration")


@dataclass
class TokenTransactionRecord:
    """Token ledger row."""

    transaction_id: int
    user_id: str
    type: str
    tokens: int
    balance_before: int
    balance_after: int
    prompt_complexity: str | None
    model: str | None
    category: str | None
    cost_in_cents: int | None
    package_type: str | None
    payment_reference: str | None
    expires_at: str | None
    is_expired: bool
    description: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""


def apply_transaction(
    user_id: str,
    type: str,
    tokens: int,
    *,
    prompt_complexity: str | None = None,
    model: str | None = None,
    category: str | None = None,
    cost_in_cents: int | None = None,
    package_type: str | None = None,
    payment_reference: str | None = None,
    expires_at: str | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> TokenTransactionRecord | None:
    """Record a ledger row and apply it to the user's balance.

    Usage rows also bump tokens_used and monthly_tokens_used; purchase rows
    bump tokens_purchased and last_token_purchase.

    Args:
        user_id: Owner
        type: One of TRANSACTION_TYPES
        tokens: Signed token delta (negative for usage/expiration)

    Returns:
        The new record, or None if the user doesn't exist
    """
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Invalid transaction type: {type}")

    with get_db() as conn:
        user = conn.execute(
            "SELECT token_balance FROM users WHERE user_id = ?", (user_id,)
        ).fetchone()
        if user is None:
            return None

        balance_before = user["token_balance"]
        balance_after = balance_before + tokens

        cursor = conn.execute(
            """
            INSERT INTO token_transactions (
                user_id, type, tokens, balance_before, balance_after,
                prompt_complexity, model, category, cost_in_cents,
                package_type, payment_reference, expires_at,
                description, metadata
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                type,
                tokens,
                balance_before,
                balance_after,
                prompt_complexity,
                model,
                category,
                cost_in_cents,
                package_type,
                payment_reference,
                expires_at,
                description,
                json.dumps(metadata or {}),
            ),
        )
        transaction_id = cursor.lastrowid

        if type == "usage":
            conn.execute(
                """
                UPDATE users SET
                    token_balance = token_balance + ?,
                    tokens_used = tokens_used + ?,
                    monthly_tokens_used = monthly_tokens_used + ?
                WHERE user_id = ?
                """,
                (tokens, -tokens, -tokens, user_id),
            )
        elif type == "purchase":
            conn.execute(
                """
                UPDATE users SET
                    token_balance = token_balance + ?,
                    tokens_purchased = tokens_purchased + ?,
                    last_token_purchase = ?
                WHERE user_id = ?
                """,
                (tokens, tokens, to_db_timestamp(), user_id),
            )
        else:
            conn.execute(
                "UPDATE users SET token_balance = token_balance + ? WHERE user_id = ?",
                (tokens, user_id),
            )

        row = conn.execute(
            "SELECT * FROM token_transactions WHERE transaction_id = ?", (transaction_id,)
        ).fetchone()

    logger.debug(
        "tokens.transaction_applied",
        user_id=user_id,
        type=type,
        tokens=tokens,
        balance_after=balance_after,
    )
    return _row_to_record(row)


def get_transaction(transaction_id: int) -> TokenTransactionRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM token_transactions WHERE transaction_id = ?", (transaction_id,)
        ).fetchone()
    return _row_to_record(row) if row is not None else None


def list_transactions(user_id: str, limit: int = 50) -> list[TokenTransactionRecord]:
    """Most recent transactions first."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM token_transactions
            WHERE user_id = ?
            ORDER BY transaction_id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def find_expired_credits(now: str) -> list[TokenTransactionRecord]:
    """Positive, not yet expired rows whose expiry is at or before now."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM token_transactions
            WHERE expires_at IS NOT NULL
              AND expires_at <= ?
              AND is_expired = 0
              AND tokens > 0
            ORDER BY transaction_id
            """,
            (now,),
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def mark_expired(transaction_id: int) -> None:
    with get_db() as conn:
        conn.execute(
            "UPDATE token_transactions SET is_expired = 1 WHERE transaction_id = ?",
            (transaction_id,),
        )


def list_active_purchases(user_id: str, now: str) -> list[TokenTransactionRecord]:
    """Unexpired purchase rows, soonest expiry first."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM token_transactions
            WHERE user_id = ?
              AND type = 'purchase'
              AND is_expired = 0
              AND tokens > 0
              AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY expires_at IS NULL, expires_at
            """,
            (user_id, now),
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def _row_to_record(row) -> TokenTransactionRecord:
    """Convert database row to TokenTransactionRecord."""
    return TokenTransactionRecord(
        transaction_id=row["transaction_id"],
        user_id=row["user_id"],
        type=row["type"],
        tokens=row["tokens"],
        balance_before=row["balance_before"],
        balance_after=row["balance_after"],
        prompt_complexity=row["prompt_complexity"],
        model=row["model"],
        category=row["category"],
        cost_in_cents=row["cost_in_cents"],
        package_type=row["package_type"],
        payment_reference=row["payment_reference"],
        expires_at=row["expires_at"],
        is_expired=bool(row["is_expired"]),
        description=row["description"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )
