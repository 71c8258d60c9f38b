"""Token checkout.

A checkout session is created as pending and returns a hosted checkout URL.
Completing it credits the package's tokens exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from smartpromptiq.config.app_config import load_app_config
from smartpromptiq.config.pricing import (
    SUBSCRIPTION_TIERS,
    TOKEN_PACKAGES,
    PricingError,
    get_package,
)
from smartpromptiq.core import token_manager
from smartpromptiq.db import billing_repository, tokens_repository, users_repository

logger = structlog.get_logger(__name__)


class BillingError(Exception):
    """Error in a billing operation."""

    pass


class CheckoutNotFoundError(BillingError):
    """Checkout session does not exist."""

    pass


@dataclass
class CheckoutResult:
    """A created or completed checkout session."""

    session_id: str
    url: str
    status: str
    package_key: str
    tokens: int
    price_in_cents: int
    tokens_credited: int = 0
    new_balance: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "url": self.url,
            "status": self.status,
            "package_key": self.package_key,
            "tokens": self.tokens,
            "price_in_cents": self.price_in_cents,
            "tokens_credited": self.tokens_credited,
            "new_balance": self.new_balance,
        }


def _checkout_url(session_id: str) -> str:
    base = load_app_config().billing.checkout_base_url.rstrip("/")
    return f"{base}/{session_id}"


def _result(
    session: billing_repository.CheckoutSessionRecord,
    tokens_credited: int = 0,
    new_balance: int | None = None,
) -> CheckoutResult:
    return CheckoutResult(
        session_id=session.session_id,
        url=_checkout_url(session.session_id),
        status=session.status,
        package_key=session.package_key,
        tokens=session.tokens,
        price_in_cents=session.price_in_cents,
        tokens_credited=tokens_credited,
        new_balance=new_balance,
    )


def _completed_result(session: billing_repository.CheckoutSessionRecord) -> CheckoutResult:
    """Result of the completion that credited a session.

    While that completion is still writing its transaction, nothing is
    reported as credited yet.
    """
    if session.transaction_id is None:
        return _result(session)
    transaction = tokens_repository.get_transaction(session.transaction_id)
    if transaction is None:
        return _result(session)
    return _result(
        session, tokens_credited=transaction.tokens, new_balance=transaction.balance_after
    )


def create_token_checkout(user_id: str, package_key: str) -> CheckoutResult:
    """Open a pending checkout session for a token package.

    Raises:
        PricingError: If the package key is unknown
        token_manager.UserNotFoundError: If the user doesn't exist
    """
    package = get_package(package_key)
    if users_repository.get_user_by_id(user_id) is None:
        raise token_manager.UserNotFoundError(f"User not found: {user_id}")

    session = billing_repository.create_session(
        user_id=user_id,
        package_key=package.key,
        tokens=package.tokens,
        price_in_cents=package.price_in_cents,
    )
    logger.info(
        "checkout_created",
        user_id=user_id,
        session_id=session.session_id,
        package=package.key,
    )
    return _result(session)


def get_checkout(session_id: str) -> CheckoutResult:
    session = billing_repository.get_session(session_id)
    if session is None:
        raise CheckoutNotFoundError(f"Checkout session not found: {session_id}")
    return _result(session)


def checkout_owner(session_id: str) -> str:
    """User ID a checkout session was opened for.

    Raises:
        CheckoutNotFoundError: If the session doesn't exist
    """
    session = billing_repository.get_session(session_id)
    if session is None:
        raise CheckoutNotFoundError(f"Checkout session not found: {session_id}")
    return session.user_id


def complete_checkout(session_id: str, now: datetime | None = None) -> CheckoutResult:
    """Mark a session paid and credit its tokens.

    Completing an already completed session credits nothing and returns
    the result of the completion that did, rebuilt from its transaction.

    Raises:
        CheckoutNotFoundError: If the session doesn't exist
    """
    session = billing_repository.get_session(session_id)
    if session is None:
        raise CheckoutNotFoundError(f"Checkout session not found: {session_id}")

    if not billing_repository.claim_session(session_id):
        logger.info("checkout_already_completed", session_id=session_id)
        return _completed_result(billing_repository.get_session(session_id))

    now = now or datetime.now(timezone.utc)
    expiry_days = load_app_config().billing.token_expiry_days
    try:
        record = token_manager.add_tokens(
            session.user_id,
            session.tokens,
            type="purchase",
            description=f"Purchased {session.tokens} tokens ({session.package_key} package)",
            expires_at=now + timedelta(days=expiry_days) if expiry_days > 0 else None,
            cost_in_cents=session.price_in_cents,
            package_type=session.package_key,
            payment_reference=session.session_id,
        )
    except Exception:
        billing_repository.release_session(session_id)
        raise

    billing_repository.attach_transaction(session_id, record.transaction_id)
    completed = billing_repository.get_session(session_id)
    logger.info(
        "checkout_completed",
        session_id=session_id,
        user_id=session.user_id,
        tokens=session.tokens,
    )
    return _result(completed, tokens_credited=session.tokens, new_balance=record.balance_after)


def list_packages() -> list[dict[str, Any]]:
    """Token packages in catalog order."""
    return [pkg.to_dict() for pkg in TOKEN_PACKAGES.values()]


def list_tiers() -> list[dict[str, Any]]:
    return [tier.to_dict() for tier in SUBSCRIPTION_TIERS.values()]


__all__ = [
    "BillingError",
    "CheckoutNotFoundError",
    "CheckoutResult",
    "PricingError",
    "checkout_owner",
    "complete_checkout",
    "create_token_checkout",
    "get_checkout",
    "list_packages",
    "list_tiers",
]
