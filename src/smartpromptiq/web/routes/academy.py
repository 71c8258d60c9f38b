"""Academy endpoints: catalog, enrollment, lessons, progress."""

import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from smartpromptiq.config.app_config import load_app_config
from smartpromptiq.core import academy
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.web.deps import admin_user, current_user, optional_user
from smartpromptiq.web.schemas import (
    EnrollRequest,
    ProgressRequest,
    QuizSubmission,
    RatingRequest,
    SeedRequest,
)

router = APIRouter(prefix="/api/academy", tags=["academy"])


def _http_error(error: academy.AcademyError) -> HTTPException:
    """Map an academy error to its HTTP status."""
    if isinstance(error, (academy.CourseNotFoundError, academy.LessonNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, academy.AccessDeniedError):
        code = status.HTTP_401_UNAUTHORIZED if error.requires_auth else status.HTTP_403_FORBIDDEN
    elif isinstance(error, academy.AlreadyEnrolledError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))


@router.get("/courses")
async def list_courses(
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = Query(default=None, alias="accessTier"),
) -> dict[str, Any]:
    """Published courses in catalog order."""
    courses = academy.list_courses(category, difficulty, access_tier)
    return {"courses": courses, "count": len(courses)}


@router.get("/search")
async def search(
    q: str = "",
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = Query(default=None, alias="accessTier"),
) -> dict[str, Any]:
    """Search courses and lessons."""
    try:
        return academy.search_courses(q, category, difficulty, access_tier)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.get("/courses/{slug}")
async def get_course(slug: str) -> dict[str, Any]:
    """Course details with its lesson outline."""
    try:
        return academy.get_course(slug)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.get("/my-courses")
async def my_courses(user: UserRecord = Depends(current_user)) -> dict[str, Any]:
    """The caller's enrollments."""
    enrollments = academy.list_my_courses(user)
    return {"enrollments": enrollments, "count": len(enrollments)}


@router.post("/enroll", status_code=status.HTTP_201_CREATED)
async def enroll(
    request: EnrollRequest,
    user: UserRecord = Depends(current_user),
) -> dict[str, Any]:
    """Enroll the caller in a course."""
    try:
        return academy.enroll(user, request.course_slug, request.enrollment_type, request.payment_id)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.get("/lesson/{lesson_id}")
async def get_lesson(
    lesson_id: str,
    user: UserRecord | None = Depends(optional_user),
) -> dict[str, Any]:
    """Lesson content. Free lessons are public."""
    try:
        return academy.get_lesson(lesson_id, user)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.post("/progress/{lesson_id}")
async def update_progress(
    lesson_id: str,
    request: ProgressRequest,
    user: UserRecord = Depends(current_user),
) -> dict[str, Any]:
    """Record lesson progress."""
    try:
        return academy.update_progress(
            user, lesson_id, request.completed, request.time_spent, request.quiz_score
        )
    except academy.AcademyError as e:
        raise _http_error(e)


@router.post("/lesson/{lesson_id}/rating")
async def rate_lesson(
    lesson_id: str,
    request: RatingRequest,
    user: UserRecord = Depends(current_user),
) -> dict[str, Any]:
    """Rate a lesson 1..5 stars."""
    try:
        return academy.rate_lesson(user, lesson_id, request.rating, request.feedback)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.post("/lesson/{lesson_id}/quiz")
async def submit_quiz(
    lesson_id: str,
    request: QuizSubmission,
    user: UserRecord | None = Depends(optional_user),
) -> dict[str, Any]:
    """Grade quiz answers; signed-in users get the score recorded."""
    try:
        academy.get_lesson(lesson_id, user)
        return academy.grade_quiz(lesson_id, request.answers, user)
    except academy.AcademyError as e:
        raise _http_error(e)


@router.get("/dashboard")
async def dashboard(user: UserRecord = Depends(current_user)) -> dict[str, Any]:
    """The caller's learning dashboard."""
    return academy.dashboard(user)


@router.get("/admin/stats")
async def admin_stats(user: UserRecord = Depends(admin_user)) -> dict[str, Any]:
    """Academy-wide statistics."""
    return academy.admin_stats()


@router.post("/seed-courses")
async def seed_courses(request: SeedRequest) -> dict[str, Any]:
    """Restore the course catalog. Guarded by the seed secret.

    Locked (403) when no secret is configured.
    """
    expected = load_app_config().auth.get_seed_secret()
    if expected is None or not secrets.compare_digest(request.secret, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid seed secret")

    count = academy.seed_courses()
    return {"success": True, "courses": count}
