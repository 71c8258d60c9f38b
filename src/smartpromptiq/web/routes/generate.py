"""Prompt generation endpoints.

Each request goes through the rate limiter, then the token check, then
the request queue, and is charged once content comes back. Anonymous
callers get the anonymous rate limit and are not charged.
"""

from typing import Any, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from smartpromptiq.core import prompt_generator, token_manager
from smartpromptiq.core.rate_limiter import get_rate_limiter
from smartpromptiq.core.request_queue import QueueJobError, QueueTimeoutError, get_request_queue
from smartpromptiq.db.generations_repository import insert_generation
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.llm.client import LLMClient
from smartpromptiq.web.deps import get_llm_client, optional_user
from smartpromptiq.web.schemas import GenerateRequest, GenerationResponse, RefineRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


def _check_limits(user: UserRecord | None, complexity: str) -> None:
    """Raise 429 or 402 before any work is queued."""
    decision = get_rate_limiter().check(
        user.user_id if user else None,
        user.subscription_tier if user else None,
    )
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "message": decision.message,
                "limit_type": decision.limit_type,
                "retry_after": decision.retry_after,
            },
            headers={"Retry-After": str(decision.retry_after)},
        )

    if user is None:
        return

    availability = token_manager.check_token_availability(user.user_id, complexity)
    if not availability.available:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": availability.error, **availability.to_dict()},
        )


async def _run_queued(func: Callable[..., Any], *args: Any) -> prompt_generator.GeneratedPrompt:
    try:
        return await get_request_queue().submit(func, *args)
    except QueueTimeoutError as e:
        raise HTTPException(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            detail={"code": e.code, "message": str(e)},
        )
    except QueueJobError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="AI services are currently unavailable. Please try again later.",
        ) from e


def _charge(
    user: UserRecord | None,
    kind: str,
    complexity: str,
    result: prompt_generator.GeneratedPrompt,
) -> GenerationResponse:
    response = GenerationResponse(
        content=result.content,
        category=result.category,
        model=result.model,
        cached=result.cached,
        sections=result.sections,
    )
    if user is None:
        insert_generation(None, kind, result.category, complexity, 0, result.content, result.model)
        return response

    try:
        charge = token_manager.consume_tokens(
            user.user_id,
            complexity,
            category=result.category,
            model=result.model,
            metadata={"kind": kind, "cached": result.cached},
        )
    except token_manager.InsufficientTokensError as e:
        # Balance spent by a concurrent request while this one was queued
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": str(e), **e.availability.to_dict()},
        )

    insert_generation(
        user.user_id,
        kind,
        result.category,
        complexity,
        charge.tokens_consumed,
        result.content,
        result.model,
    )
    response.tokens_consumed = charge.tokens_consumed
    response.token_balance = charge.new_balance
    response.low_balance = charge.low_balance
    return response


def _require_category(category: str) -> None:
    if category not in prompt_generator.CATEGORY_STRUCTURES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported category: {category}",
        )


@router.post("/generate", response_model=GenerationResponse)
async def generate(
    request: GenerateRequest,
    user: UserRecord | None = Depends(optional_user),
    client: LLMClient | None = Depends(get_llm_client),
) -> GenerationResponse:
    """Generate a category prompt from questionnaire answers."""
    _require_category(request.category)
    _check_limits(user, request.complexity)

    result = await _run_queued(
        prompt_generator.generate_prompt,
        request.category,
        request.answers,
        request.customization.to_options(),
        client,
    )
    logger.info("generate_request_completed", category=request.category, cached=result.cached)
    return _charge(user, "generate", request.complexity, result)


@router.post("/refine", response_model=GenerationResponse)
async def refine(
    request: RefineRequest,
    user: UserRecord | None = Depends(optional_user),
    client: LLMClient | None = Depends(get_llm_client),
) -> GenerationResponse:
    """Refine an existing prompt."""
    _require_category(request.category)
    _check_limits(user, request.complexity)

    result = await _run_queued(
        prompt_generator.refine_prompt,
        request.current_prompt,
        request.refinement_query,
        request.category,
        request.original_answers,
        [step.model_dump() for step in request.history],
        client,
    )
    return _charge(user, "refine", request.complexity, result)


@router.get("/suggestions")
async def suggestions(
    category: str | None = None,
    q: str = "",
    limit: int = 8,
) -> dict[str, Any]:
    """Ready-made prompt ideas ranked by relevance."""
    if category is not None:
        _require_category(category)
    items = prompt_generator.suggest_prompts(category, q, limit=max(1, limit))
    return {"suggestions": items, "count": len(items)}
