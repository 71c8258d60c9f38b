"""Token balance management.

Responsibilities:
- Check whether a user can afford a generation
- Consume tokens (ledger row + balance update)
- Credit tokens from purchases, bonuses, rollovers and refunds
- Monthly rollover of unused subscription tokens
- Expiry of time-limited credits
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from smartpromptiq.config.pricing import (
    LOW_BALANCE_THRESHOLD,
    TOKEN_CONSUMPTION,
    UNLIMITED,
    get_tier,
)
from smartpromptiq.db import tokens_repository, users_repository
from smartpromptiq.db.database import to_db_timestamp

logger = structlog.get_logger(__name__)

ROLLOVER_EXPIRY_DAYS = 30


class TokenError(Exception):
    """Error in a token operation."""

    pass


class UserNotFoundError(TokenError):
    """User does not exist."""

    pass


class InsufficientTokensError(TokenError):
    """User cannot afford the operation."""

    def __init__(self, message: str, availability: "TokenAvailability"):
        super().__init__(message)
        self.availability = availability


@dataclass
class TokenAvailability:
    """Result of an availability check."""

    available: bool
    tokens_needed: int
    balance: int = 0
    monthly_remaining: int = UNLIMITED
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "tokens_needed": self.tokens_needed,
            "balance": self.balance,
            "monthly_remaining": self.monthly_remaining,
            "error": self.error,
            **self.details,
        }


@dataclass
class ConsumeResult:
    """Outcome of a successful consumption."""

    transaction_id: int
    tokens_consumed: int
    new_balance: int
    low_balance: bool
    complexity: str
    category: str | None
    model: str | None


def calculate_token_cost(complexity: str, quantity: int = 1) -> int:
    """Tokens for quantity operations; unknown complexity costs as standard."""
    base = TOKEN_CONSUMPTION.get(complexity, TOKEN_CONSUMPTION["standard"])
    return base * quantity


def first_of_next_month(now: datetime) -> datetime:
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def next_reset_date(now: datetime | None = None) -> datetime:
    """Start of the next monthly allowance period."""
    return first_of_next_month(now or datetime.now(timezone.utc))


def check_token_availability(user_id: str, complexity: str = "standard") -> TokenAvailability:
    """Check if a user can pay for one generation of the given complexity.

    The balance must cover the cost and, for tiers with a monthly allowance,
    the allowance remaining this month must also cover it.

    Args:
        user_id: User ID
        complexity: Key of TOKEN_CONSUMPTION

    Returns:
        TokenAvailability (never raises for business failures)
    """
    needed = calculate_token_cost(complexity)
    user = users_repository.get_user_by_id(user_id)

    if user is None:
        return TokenAvailability(available=False, tokens_needed=needed, error="User not found")

    if not user.is_active:
        return TokenAvailability(
            available=False, tokens_needed=needed, error="Account is suspended"
        )

    if user.token_balance < needed:
        return TokenAvailability(
            available=False,
            tokens_needed=needed,
            balance=user.token_balance,
            error="Insufficient tokens",
            details={"shortfall": needed - user.token_balance},
        )

    tier = get_tier(user.subscription_tier)
    monthly_remaining = UNLIMITED
    if tier.tokens_per_month != UNLIMITED:
        monthly_remaining = tier.tokens_per_month - user.monthly_tokens_used
        if monthly_remaining < needed:
            return TokenAvailability(
                available=False,
                tokens_needed=needed,
                balance=user.token_balance,
                monthly_remaining=monthly_remaining,
                error="Monthly token limit exceeded",
                details={
                    "monthly_limit": tier.tokens_per_month,
                    "monthly_used": user.monthly_tokens_used,
                    "reset_date": user.monthly_reset_date,
                },
            )

    return TokenAvailability(
        available=True,
        tokens_needed=needed,
        balance=user.token_balance,
        monthly_remaining=monthly_remaining,
    )


def consume_tokens(
    user_id: str,
    complexity: str = "standard",
    category: str | None = None,
    model: str | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ConsumeResult:
    """Charge a user for one generation.

    Raises:
        UserNotFoundError: If the user doesn't exist
        InsufficientTokensError: If the availability check fails
    """
    availability = check_token_availability(user_id, complexity)
    if not availability.available:
        if availability.error == "User not found":
            raise UserNotFoundError(f"User not found: {user_id}")
        raise InsufficientTokensError(availability.error or "Insufficient tokens", availability)

    cost = availability.tokens_needed
    record = tokens_repository.apply_transaction(
        user_id,
        "usage",
        -cost,
        prompt_complexity=complexity,
        model=model,
        category=category,
        description=description or f"Used {cost} tokens for {complexity} prompt",
        metadata=metadata,
    )
    if record is None:
        raise UserNotFoundError(f"User not found: {user_id}")

    low_balance = (
        record.balance_after <= LOW_BALANCE_THRESHOLD
        and record.balance_before > LOW_BALANCE_THRESHOLD
    )
    if low_balance:
        logger.warning("low_token_balance", user_id=user_id, balance=record.balance_after)

    logger.info(
        "tokens_consumed",
        user_id=user_id,
        tokens=cost,
        complexity=complexity,
        balance=record.balance_after,
    )

    return ConsumeResult(
        transaction_id=record.transaction_id,
        tokens_consumed=cost,
        new_balance=record.balance_after,
        low_balance=low_balance,
        complexity=complexity,
        category=category,
        model=model,
    )


def add_tokens(
    user_id: str,
    tokens: int,
    type: str = "bonus",
    description: str | None = None,
    expires_at: datetime | None = None,
    cost_in_cents: int | None = None,
    package_type: str | None = None,
    payment_reference: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> tokens_repository.TokenTransactionRecord:
    """Credit tokens to a user.

    Args:
        user_id: User ID
        tokens: Positive token count
        type: purchase, bonus, rollover or refund

    Raises:
        TokenError: If tokens is not positive or type is not a credit type
        UserNotFoundError: If the user doesn't exist
    """
    if tokens <= 0:
        raise TokenError("tokens must be positive")
    if type not in ("purchase", "bonus", "rollover", "refund"):
        raise TokenError(f"Invalid credit type: {type}")

    record = tokens_repository.apply_transaction(
        user_id,
        type,
        tokens,
        cost_in_cents=cost_in_cents,
        package_type=package_type,
        payment_reference=payment_reference,
        expires_at=to_db_timestamp(expires_at) if expires_at else None,
        description=description or f"Added {tokens} tokens ({type})",
        metadata=metadata,
    )
    if record is None:
        raise UserNotFoundError(f"User not found: {user_id}")

    logger.info("tokens_added", user_id=user_id, tokens=tokens, type=type)
    return record


def handle_monthly_rollover(user_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    """Reset monthly usage and roll unused allowance over.

    Nothing happens for unknown users, tiers without an allowance, or when
    the reset date has not been reached.

    Returns:
        Dict with rollover_tokens and next_reset_date, or None if skipped
    """
    now = now or datetime.now(timezone.utc)
    user = users_repository.get_user_by_id(user_id)
    if user is None:
        return None

    tier = get_tier(user.subscription_tier)
    if tier.tokens_per_month <= 0:
        return None

    if user.monthly_reset_date is not None and user.monthly_reset_date > to_db_timestamp(now):
        return None

    unused = max(0, tier.tokens_per_month - user.monthly_tokens_used)
    max_rollover = unused if tier.max_token_rollover == UNLIMITED else tier.max_token_rollover
    rollover_tokens = min(unused, max_rollover)

    next_reset = first_of_next_month(now)
    users_repository.reset_monthly_usage(user_id, to_db_timestamp(next_reset))

    if rollover_tokens > 0:
        add_tokens(
            user_id,
            rollover_tokens,
            type="rollover",
            description=f"Monthly rollover: {rollover_tokens} tokens",
            expires_at=now + timedelta(days=ROLLOVER_EXPIRY_DAYS),
        )

    logger.info(
        "monthly_rollover",
        user_id=user_id,
        rollover_tokens=rollover_tokens,
        next_reset=to_db_timestamp(next_reset),
    )
    return {
        "reset": True,
        "rollover_tokens": rollover_tokens,
        "next_reset_date": to_db_timestamp(next_reset),
    }


def run_monthly_rollovers(now: datetime | None = None) -> int:
    """Roll over every paid active user whose reset date has passed."""
    now = now or datetime.now(timezone.utc)
    count = 0
    for user in users_repository.list_users(due_for_reset_before=to_db_timestamp(now)):
        if handle_monthly_rollover(user.user_id, now) is not None:
            count += 1
    return count


def expire_tokens(now: datetime | None = None) -> dict[str, Any]:
    """Expire credits past their expiry date.

    Each expired credit is marked; its tokens are deducted only when the
    user's balance still covers them.

    Returns:
        Dict with expired_transactions and tokens_removed
    """
    now = now or datetime.now(timezone.utc)
    now_str = to_db_timestamp(now)
    expired = tokens_repository.find_expired_credits(now_str)
    removed = 0

    for credit in expired:
        tokens_repository.mark_expired(credit.transaction_id)

        user = users_repository.get_user_by_id(credit.user_id)
        if user is None or user.token_balance < credit.tokens:
            continue

        tokens_repository.apply_transaction(
            credit.user_id,
            "expiration",
            -credit.tokens,
            description=f"{credit.tokens} tokens expired from {credit.package_type or credit.type}",
            metadata={"original_transaction_id": credit.transaction_id, "expired_at": now_str},
        )
        removed += credit.tokens

    logger.info("tokens_expired", transactions=len(expired), tokens_removed=removed)
    return {"expired_transactions": len(expired), "tokens_removed": removed, "expired_at": now_str}


def get_token_balance(user_id: str) -> dict[str, Any]:
    """Balance breakdown: monthly allowance, active purchases, lifetime totals.

    Raises:
        UserNotFoundError: If the user doesn't exist
    """
    user = users_repository.get_user_by_id(user_id)
    if user is None:
        raise UserNotFoundError(f"User not found: {user_id}")

    tier = get_tier(user.subscription_tier)
    monthly_remaining = (
        UNLIMITED
        if tier.tokens_per_month == UNLIMITED
        else tier.tokens_per_month - user.monthly_tokens_used
    )
    active = tokens_repository.list_active_purchases(
        user_id, to_db_timestamp(datetime.now(timezone.utc))
    )

    return {
        "total_balance": user.token_balance,
        "subscription_tier": user.subscription_tier,
        "monthly": {
            "used": user.monthly_tokens_used,
            "limit": tier.tokens_per_month,
            "remaining": monthly_remaining,
            "reset_date": user.monthly_reset_date,
        },
        "purchased": {
            "active": [
                {
                    "tokens": t.tokens,
                    "expires_at": t.expires_at,
                    "package_type": t.package_type,
                    "created_at": t.created_at,
                }
                for t in active
            ],
            "total_purchased": user.tokens_purchased,
            "last_purchase": user.last_token_purchase,
        },
        "lifetime": {
            "used": user.tokens_used,
            "purchased": user.tokens_purchased,
            "balance": user.token_balance,
        },
    }
