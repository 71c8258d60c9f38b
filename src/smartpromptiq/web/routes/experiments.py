"""A/B test endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from smartpromptiq.core.ab_testing import get_ab_service
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.web.deps import admin_user, optional_user
from smartpromptiq.web.schemas import AssignmentResponse, TrackEventRequest

router = APIRouter(prefix="/api/ab-tests", tags=["experiments"])


def _subject(user: UserRecord | None, visitor_id: str | None) -> str:
    """Signed-in users are bucketed by user ID, visitors by their visitor ID."""
    if user is not None:
        return user.user_id
    if visitor_id:
        return f"visitor:{visitor_id}"
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="visitor_id is required for anonymous requests",
    )


def _require_test(test_id: str) -> None:
    if get_ab_service().get_test(test_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"A/B test '{test_id}' not found",
        )


@router.get("/config")
async def ab_config(
    visitor_id: str | None = None,
    user: UserRecord | None = Depends(optional_user),
) -> dict[str, Any]:
    """UI configuration for every experiment surface."""
    service = get_ab_service()
    subject = _subject(user, visitor_id)
    return {
        "user_id": subject,
        "tests": service.get_ab_test_config(subject),
        "onboarding": service.get_onboarding_config(subject),
        "pricing": service.get_pricing_config(subject),
        "prompt_ui": service.get_prompt_ui_config(subject),
    }


@router.get("/{test_id}/assignment", response_model=AssignmentResponse)
async def assignment(
    test_id: str,
    visitor_id: str | None = None,
    user: UserRecord | None = Depends(optional_user),
) -> AssignmentResponse:
    """The caller's variant for a test, or null when not in it."""
    _require_test(test_id)
    subject = _subject(user, visitor_id)
    variant = get_ab_service().assign_user_to_test(subject, test_id)
    return AssignmentResponse(
        test_id=test_id,
        user_id=subject,
        variant=variant.to_dict() if variant else None,
    )


@router.post("/{test_id}/events")
async def track_event(
    test_id: str,
    request: TrackEventRequest,
    visitor_id: str | None = None,
    user: UserRecord | None = Depends(optional_user),
) -> dict[str, Any]:
    """Record a conversion or interaction event."""
    _require_test(test_id)
    subject = _subject(user, visitor_id)

    event_data = dict(request.metadata)
    if request.value is not None:
        event_data["value"] = request.value

    event = get_ab_service().track_event(subject, test_id, request.event_type, event_data)
    if event is None:
        return {"tracked": False, "reason": "User is not part of this test"}
    return {"tracked": True, "variant_id": event.variant_id}


@router.get("/{test_id}/results")
async def results(
    test_id: str,
    user: UserRecord = Depends(admin_user),
) -> dict[str, Any]:
    """Per-variant aggregates (admin only)."""
    _require_test(test_id)
    return get_ab_service().get_test_results(test_id)
