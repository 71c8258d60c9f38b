"""Billing endpoints: catalog, balance and token checkout."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from smartpromptiq.config.pricing import (
    MAX_TOKEN_PURCHASE,
    PricingError,
    calculate_optimal_token_cost,
)
from smartpromptiq.core import billing, token_manager
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.web.deps import current_user
from smartpromptiq.web.schemas import CheckoutResponse, TokenCheckoutRequest

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/packages")
async def list_packages() -> dict[str, Any]:
    """Token packages for sale."""
    return {"packages": billing.list_packages()}


@router.get("/tiers")
async def list_tiers() -> dict[str, Any]:
    """Subscription tiers."""
    return {"tiers": billing.list_tiers()}


@router.get("/balance")
async def balance(user: UserRecord = Depends(current_user)) -> dict[str, Any]:
    """The caller's token balance breakdown."""
    return token_manager.get_token_balance(user.user_id)


@router.get("/optimal-cost")
async def optimal_cost(tokens: int = Query(..., ge=1, le=MAX_TOKEN_PURCHASE)) -> dict[str, Any]:
    """Cheapest package combination for a token amount."""
    return calculate_optimal_token_cost(tokens)


@router.post(
    "/create-token-checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_token_checkout(
    request: TokenCheckoutRequest,
    user: UserRecord = Depends(current_user),
) -> CheckoutResponse:
    """Open a checkout session for a token package."""
    try:
        result = billing.create_token_checkout(user.user_id, request.package_key)
    except PricingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return CheckoutResponse(**result.to_dict())


@router.post("/checkout/{session_id}/complete", response_model=CheckoutResponse)
async def complete_checkout(
    session_id: str,
    user: UserRecord = Depends(current_user),
) -> CheckoutResponse:
    """Confirm payment and credit the tokens (idempotent)."""
    try:
        owner = billing.checkout_owner(session_id)
    except billing.CheckoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if owner != user.user_id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Checkout session '{session_id}' belongs to another user",
        )

    result = billing.complete_checkout(session_id)
    return CheckoutResponse(**result.to_dict())
