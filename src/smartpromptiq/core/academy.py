"""Academy: course catalog, enrollment, lesson progress and certificates.

Access tiers:
- free: open to everyone
- smartpromptiq_included: any paid subscription
- pro: pro, team_pro or enterprise subscriptions
- certification: paid per course, requires an enrollment

Enrollment progress is the rounded percentage of published lessons
completed. Reaching 100% completes the enrollment and issues a single
certificate.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from smartpromptiq.config.pricing import PRO_TIERS, get_tier
from smartpromptiq.db import academy_repository as repo
from smartpromptiq.db.academy_repository import CourseRecord, LessonRecord
from smartpromptiq.db.database import to_db_timestamp
from smartpromptiq.db.users_repository import UserRecord

logger = structlog.get_logger(__name__)

ACCESS_TIERS = ("free", "smartpromptiq_included", "pro", "certification")
QUIZ_PASSING_PERCENTAGE = 70
MIN_SEARCH_LENGTH = 2


# =============================================================================
# ERRORS
# =============================================================================


class AcademyError(Exception):
    """Error in an Academy operation."""

    pass


class CourseNotFoundError(AcademyError):
    pass


class LessonNotFoundError(AcademyError):
    pass


class AccessDeniedError(AcademyError):
    """User lacks the tier or enrollment for this content."""

    def __init__(self, message: str, requires_auth: bool = False):
        super().__init__(message)
        self.requires_auth = requires_auth


class AlreadyEnrolledError(AcademyError):
    pass


class InvalidRatingError(AcademyError, ValueError):
    pass


class InvalidSearchError(AcademyError, ValueError):
    pass


# =============================================================================
# SEED CATALOG
# =============================================================================

SEED_COURSES: list[dict[str, Any]] = [
    {
        "title": "Prompt Writing 101",
        "slug": "prompt-writing-101",
        "description": "Master the fundamentals of prompt engineering.",
        "category": "prompt-engineering",
        "difficulty": "beginner",
        "duration": 180,
        "access_tier": "free",
        "order_index": 1,
        "instructor": "Dr. Sarah Chen",
        "tags": ["fundamentals", "beginner", "free"],
        "average_rating": 4.9,
        "review_count": 1234,
    },
    {
        "title": "Introduction to AI Prompting",
        "slug": "introduction-to-ai-prompting",
        "description": "Understand how AI language models work.",
        "category": "prompt-engineering",
        "difficulty": "beginner",
        "duration": 120,
        "access_tier": "free",
        "order_index": 2,
        "instructor": "Prof. Michael Zhang",
        "tags": ["ai-basics", "beginner", "free"],
        "average_rating": 4.8,
        "review_count": 892,
    },
    {
        "title": "AI Agents Fundamentals",
        "slug": "ai-agents-fundamentals",
        "description": "Core concepts of AI agents and automation.",
        "category": "smartpromptiq",
        "difficulty": "beginner",
        "duration": 25,
        "access_tier": "free",
        "order_index": 3,
        "instructor": "Alex Thompson",
        "tags": ["agents", "fundamentals", "free"],
        "average_rating": 4.8,
        "review_count": 1523,
        "enrollment_count": 3200,
    },
    {
        "title": "AI Agents Masterclass",
        "slug": "ai-agents-masterclass",
        "description": (
            "Learn to build, deploy, and monetize AI chatbots for any website. "
            "From basics to advanced automation."
        ),
        "category": "smartpromptiq",
        "difficulty": "intermediate",
        "duration": 30,
        "access_tier": "free",
        "order_index": 4,
        "instructor": "Alex Thompson",
        "tags": ["agents", "chatbots", "automation", "free", "featured"],
        "average_rating": 4.9,
        "review_count": 2847,
        "enrollment_count": 2847,
    },
    {
        "title": "SmartPromptIQ Product Tour",
        "slug": "smartpromptiq-product-tour",
        "description": "Complete walkthrough of SmartPromptIQ platform features.",
        "category": "smartpromptiq",
        "difficulty": "beginner",
        "duration": 90,
        "access_tier": "free",
        "order_index": 5,
        "instructor": "Emma Rodriguez",
        "tags": ["platform", "tutorial", "free"],
        "average_rating": 4.9,
        "review_count": 567,
    },
    {
        "title": "SmartPromptIQ Basics",
        "slug": "smartpromptiq-basics",
        "description": "Getting the most from your SmartPromptIQ subscription.",
        "category": "smartpromptiq",
        "difficulty": "beginner",
        "duration": 240,
        "access_tier": "smartpromptiq_included",
        "order_index": 6,
        "instructor": "David Kim",
        "tags": ["platform", "basics", "included"],
        "average_rating": 4.9,
        "review_count": 445,
    },
    {
        "title": "Advanced Prompt Patterns",
        "slug": "advanced-prompt-patterns",
        "description": "Master sophisticated prompt design patterns.",
        "category": "prompt-engineering",
        "difficulty": "advanced",
        "duration": 480,
        "access_tier": "pro",
        "order_index": 10,
        "instructor": "Dr. James Wilson",
        "tags": ["advanced", "patterns", "pro"],
        "average_rating": 4.9,
        "review_count": 723,
    },
    {
        "title": "Certified Prompt Engineer (CPE)",
        "slug": "certified-prompt-engineer-cpe",
        "description": "Complete certification program with exam.",
        "category": "certification",
        "difficulty": "advanced",
        "duration": 2400,
        "access_tier": "certification",
        "price_in_cents": 29900,
        "order_index": 20,
        "instructor": "Multiple Experts",
        "tags": ["certification", "professional", "exam"],
        "average_rating": 4.9,
        "review_count": 1567,
    },
]

MASTERCLASS_SLUG = "ai-agents-masterclass"

MASTERCLASS_LESSONS: list[dict[str, Any]] = [
    {
        "title": "Welcome to AI Agents",
        "description": "Introduction to AI agents and what you will learn",
        "content": (
            "# Welcome to AI Agents Masterclass!\n\n"
            "In this course you will learn to build, deploy, and monetize AI chat agents."
        ),
        "duration": 5,
    },
    {
        "title": "Creating Your First AI Agent",
        "description": "Step-by-step guide to creating your first agent",
        "content": (
            "# Creating Your First AI Agent\n\n"
            "1. Go to AI Agents section\n2. Click Create Agent\n"
            "3. Fill in the details\n4. Get your API key"
        ),
        "duration": 6,
    },
    {
        "title": "Writing Effective System Prompts",
        "description": "Master the CRISP framework for system prompts",
        "content": (
            "# Writing Effective System Prompts\n\n## The CRISP Framework\n\n"
            "- **C**ontext\n- **R**ole\n- **I**nstructions\n- **S**cope\n- **P**ersonality"
        ),
        "duration": 7,
        "quiz": [
            {
                "question": "What does the R in CRISP stand for?",
                "type": "multiple_choice",
                "options": ["Rules", "Role", "Response", "Reasoning"],
                "correct_answer": 1,
            },
            {
                "question": "A system prompt should define the agent's scope.",
                "type": "true_false",
                "correct_answer": True,
            },
        ],
    },
    {
        "title": "Embedding Agents on Your Website",
        "description": "Technical guide to adding agents to any site",
        "content": (
            "# Embedding Agents\n\nAdd this script to your website:\n\n```html\n"
            '<script src="https://smartpromptiq.com/widget.js" data-agent="your-slug"></script>\n'
            "```"
        ),
        "duration": 5,
    },
    {
        "title": "Advanced Features",
        "description": "Voice, analytics, and customization",
        "content": (
            "# Advanced Features\n\n- Voice capabilities\n- Analytics dashboard\n"
            "- Custom styling\n- Rate limiting"
        ),
        "duration": 4,
    },
    {
        "title": "Monetization Strategies",
        "description": "Turn your agents into revenue",
        "content": (
            "# Monetization Strategies\n\n1. Sell as a service\n2. Lead generation\n"
            "3. Customer support savings\n4. Premium chat tiers"
        ),
        "duration": 3,
    },
]


def seed_courses() -> int:
    """Replace the catalog with the seed courses and masterclass lessons.

    Existing courses are removed first, along with their lessons,
    enrollments and progress, so running it twice gives the same catalog.

    Returns:
        Number of courses seeded
    """
    removed = repo.delete_all_courses()

    masterclass_id = None
    for data in SEED_COURSES:
        course = repo.insert_course(**data)
        if course.slug == MASTERCLASS_SLUG:
            masterclass_id = course.course_id

    if masterclass_id is not None:
        for order, lesson in enumerate(MASTERCLASS_LESSONS, start=1):
            repo.insert_lesson(
                course_id=masterclass_id,
                order_index=order,
                is_free=True,
                is_published=True,
                **lesson,
            )

    logger.info("academy_seeded", courses=len(SEED_COURSES), removed=removed)
    return len(SEED_COURSES)


# =============================================================================
# CATALOG
# =============================================================================


def list_courses(
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = None,
) -> list[dict[str, Any]]:
    """Published courses with lesson counts, in catalog order."""
    result = []
    for course in repo.list_courses(category, difficulty, access_tier):
        data = course.to_dict()
        data["lesson_count"] = len(repo.list_lessons(course.course_id))
        result.append(data)
    return result


def search_courses(
    query: str,
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = None,
) -> dict[str, Any]:
    """Search published courses and lessons.

    Raises:
        InvalidSearchError: If the query is shorter than two characters
    """
    term = (query or "").strip().lower()
    if len(term) < MIN_SEARCH_LENGTH:
        raise InvalidSearchError("Search query must be at least 2 characters")

    courses = repo.search_courses(term, category, difficulty, access_tier)
    lessons = repo.search_lessons(term)
    return {
        "query": term,
        "courses": {"count": len(courses), "results": [c.to_dict() for c in courses]},
        "lessons": {
            "count": len(lessons),
            "results": [item.to_dict(include_content=False) for item in lessons],
        },
        "total_results": len(courses) + len(lessons),
    }


def _require_course(slug: str) -> CourseRecord:
    course = repo.get_course_by_slug(slug)
    if course is None:
        raise CourseNotFoundError(f"Course not found: {slug}")
    return course


def _require_lesson(lesson_id: str) -> LessonRecord:
    lesson = repo.get_lesson(lesson_id)
    if lesson is None:
        raise LessonNotFoundError(f"Lesson not found: {lesson_id}")
    return lesson


def get_course(slug: str) -> dict[str, Any]:
    """Course with its published lesson outline (no lesson content)."""
    course = _require_course(slug)
    data = course.to_dict()
    data["lessons"] = [
        item.to_dict(include_content=False) for item in repo.list_lessons(course.course_id)
    ]
    return data


# =============================================================================
# ACCESS AND ENROLLMENT
# =============================================================================


def check_course_access(user: UserRecord | None, course: CourseRecord) -> bool:
    """Whether the user's tier (or enrollment) unlocks the course."""
    if course.access_tier == "free":
        return True
    if user is None:
        return False
    if course.access_tier == "smartpromptiq_included":
        return get_tier(user.subscription_tier).is_paid
    if course.access_tier == "pro":
        return user.subscription_tier in PRO_TIERS
    if course.access_tier == "certification":
        return repo.get_enrollment(user.user_id, course.course_id) is not None
    return False


def enroll(
    user: UserRecord,
    slug: str,
    enrollment_type: str = "free",
    payment_id: str | None = None,
) -> dict[str, Any]:
    """Enroll a user in a course.

    Certification courses are sold individually and need a payment_id.

    Raises:
        CourseNotFoundError: Unknown slug
        AccessDeniedError: Tier doesn't unlock the course
        AlreadyEnrolledError: User is already enrolled
    """
    course = _require_course(slug)

    if course.access_tier == "certification":
        if not payment_id:
            raise AccessDeniedError("Certification courses require a completed purchase")
        enrollment_type = "certification"
    elif not check_course_access(user, course):
        raise AccessDeniedError(
            f"Your {user.subscription_tier} plan does not include this course"
        )

    try:
        enrollment = repo.create_enrollment(user.user_id, course.course_id, enrollment_type)
    except sqlite3.IntegrityError as e:
        raise AlreadyEnrolledError("Already enrolled in this course") from e

    logger.info("course_enrolled", user_id=user.user_id, course=slug, type=enrollment_type)
    data = enrollment.to_dict()
    data["course"] = course.to_dict()
    return data


def list_my_courses(user: UserRecord) -> list[dict[str, Any]]:
    """The user's enrollments with course and lesson outline."""
    result = []
    for enrollment in repo.list_enrollments(user.user_id):
        course = repo.get_course_by_id(enrollment.course_id)
        if course is None:
            continue
        data = enrollment.to_dict()
        data["course"] = course.to_dict()
        data["course"]["lessons"] = [
            item.to_dict(include_content=False) for item in repo.list_lessons(course.course_id)
        ]
        result.append(data)
    return result


# =============================================================================
# LESSONS AND PROGRESS
# =============================================================================


def _has_lesson_access(user: UserRecord | None, lesson: LessonRecord) -> bool:
    if lesson.is_free:
        return True
    if user is None:
        return False
    course = repo.get_course_by_id(lesson.course_id)
    if course is None:
        return False
    enrolled = repo.get_enrollment(user.user_id, course.course_id) is not None
    return enrolled and check_course_access(user, course)


def get_lesson(lesson_id: str, user: UserRecord | None = None) -> dict[str, Any]:
    """Lesson content with navigation and the user's progress.

    Free lessons are open to everyone; others need an enrollment.

    Raises:
        LessonNotFoundError: Unknown lesson
        AccessDeniedError: Not enrolled
    """
    lesson = _require_lesson(lesson_id)
    if not _has_lesson_access(user, lesson):
        raise AccessDeniedError(
            "Access denied. Please enroll in this course to access this lesson.",
            requires_auth=user is None,
        )

    siblings = repo.list_lessons(lesson.course_id)
    ids = [item.lesson_id for item in siblings]
    index = ids.index(lesson_id) if lesson_id in ids else -1
    previous_lesson = siblings[index - 1] if index > 0 else None
    next_lesson = siblings[index + 1] if 0 <= index < len(siblings) - 1 else None

    progress = repo.get_progress(user.user_id, lesson_id) if user is not None else None
    course = repo.get_course_by_id(lesson.course_id)

    lesson_data = lesson.to_dict()
    if lesson.quiz:
        # Answers stay server side
        lesson_data["quiz"] = [
            {k: v for k, v in q.items() if k != "correct_answer"} for q in lesson.quiz
        ]

    return {
        "lesson": lesson_data,
        "course": course.to_dict() if course else None,
        "progress": progress.to_dict() if progress else None,
        "next_lesson": next_lesson.to_dict(include_content=False) if next_lesson else None,
        "previous_lesson": (
            previous_lesson.to_dict(include_content=False) if previous_lesson else None
        ),
    }


def _recompute_enrollment(user: UserRecord, course_id: str) -> dict[str, Any] | None:
    enrollment = repo.get_enrollment(user.user_id, course_id)
    if enrollment is None:
        return None

    total = len(repo.list_lessons(course_id))
    completed = repo.count_completed_lessons(user.user_id, course_id)
    progress = round(completed / total * 100) if total else 0
    is_complete = total > 0 and completed >= total

    repo.update_enrollment_progress(user.user_id, course_id, progress, is_complete)

    certificate = None
    if is_complete and repo.get_certificate(user.user_id, course_id) is None:
        course = repo.get_course_by_id(course_id)
        certificate = repo.insert_certificate(
            user.user_id,
            course_id,
            course.title if course else "",
            user.display_name,
        )
        logger.info("course_completed", user_id=user.user_id, course_id=course_id)

    return {
        "progress": progress,
        "status": "completed" if is_complete else "active",
        "certificate": certificate.to_dict() if certificate else None,
    }


def update_progress(
    user: UserRecord,
    lesson_id: str,
    completed: bool,
    time_spent: int = 0,
    quiz_score: float | None = None,
) -> dict[str, Any]:
    """Record lesson progress and refresh the enrollment.

    Raises:
        LessonNotFoundError: Unknown lesson
    """
    lesson = _require_lesson(lesson_id)
    progress = repo.upsert_progress(
        user.user_id, lesson_id, completed, max(0, time_spent), quiz_score
    )
    enrollment = _recompute_enrollment(user, lesson.course_id)
    return {"progress": progress.to_dict(), "enrollment": enrollment}


def rate_lesson(
    user: UserRecord, lesson_id: str, rating: int, feedback: str | None = None
) -> dict[str, Any]:
    """Rate a lesson 1..5 stars.

    Raises:
        InvalidRatingError: Rating outside 1..5
        LessonNotFoundError: Unknown lesson
        AccessDeniedError: Not enrolled in a paid lesson's course
    """
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRatingError("Rating must be between 1 and 5 stars")

    lesson = _require_lesson(lesson_id)
    if not _has_lesson_access(user, lesson):
        raise AccessDeniedError("You must be enrolled in this course to rate lessons")

    progress = repo.set_rating(user.user_id, lesson_id, rating, feedback or None)
    return {"rating": progress.rating, "feedback": progress.feedback}


def _normalize_choice(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _normalize_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        stripped = value.strip().lower()
        if stripped in ("true", "t", "yes", "1"):
            return True
        if stripped in ("false", "f", "no", "0"):
            return False
    return None


def grade_quiz(
    lesson_id: str,
    answers: list[Any],
    user: UserRecord | None = None,
) -> dict[str, Any]:
    """Grade a lesson quiz deterministically.

    Multiple choice answers are option indexes; true/false answers accept
    booleans or their usual string spellings. Missing answers are wrong.

    Raises:
        LessonNotFoundError: Unknown lesson
        AcademyError: Lesson has no quiz
    """
    lesson = _require_lesson(lesson_id)
    if not lesson.quiz:
        raise AcademyError("This lesson has no quiz")

    results = []
    score = 0
    for i, question in enumerate(lesson.quiz):
        given = answers[i] if i < len(answers) else None
        if question.get("type") == "true_false":
            correct = _normalize_bool(given) is not None and (
                _normalize_bool(given) == _normalize_bool(question.get("correct_answer"))
            )
        else:
            correct = _normalize_choice(given) is not None and (
                _normalize_choice(given) == _normalize_choice(question.get("correct_answer"))
            )
        score += int(correct)
        results.append({"index": i, "correct": correct})

    total = len(lesson.quiz)
    percentage = round(score / total * 100) if total else 0
    passed = percentage >= QUIZ_PASSING_PERCENTAGE

    if user is not None:
        existing = repo.get_progress(user.user_id, lesson_id)
        repo.upsert_progress(
            user.user_id,
            lesson_id,
            completed=existing.completed if existing else False,
            quiz_score=percentage,
        )

    logger.info("quiz_graded", lesson_id=lesson_id, score=score, total=total, passed=passed)
    return {
        "score": score,
        "total": total,
        "percentage": percentage,
        "passed": passed,
        "results": results,
    }


# =============================================================================
# DASHBOARDS
# =============================================================================


def _completion_rate(completed: int, total: int) -> int:
    return round(completed / total * 100) if total else 0


def dashboard(user: UserRecord) -> dict[str, Any]:
    """A learner's enrollments, stats, certificates and recent activity."""
    enrollments = list_my_courses(user)
    certificates = repo.list_certificates(user.user_id)
    completed_courses = sum(1 for e in enrollments if e["status"] == "completed")

    return {
        "enrollments": enrollments,
        "stats": {
            "courses_enrolled": len(enrollments),
            "courses_completed": completed_courses,
            "lessons_completed": repo.count_completed_lessons(user.user_id),
            "certificates_earned": len(certificates),
            "completion_rate": _completion_rate(completed_courses, len(enrollments)),
        },
        "certificates": [c.to_dict() for c in certificates],
        "recent_activity": [p.to_dict() for p in repo.list_recent_progress(user.user_id)],
    }


def admin_stats(now: datetime | None = None) -> dict[str, Any]:
    """Academy-wide counts for administrators."""
    now = now or datetime.now(timezone.utc)
    counts = repo.academy_counts(to_db_timestamp(now - timedelta(days=30)))

    return {
        "overview": {
            "total_courses": counts.total_courses,
            "published_courses": counts.published_courses,
            "total_enrollments": counts.total_enrollments,
            "active_enrollments": counts.active_enrollments,
            "completed_courses": counts.completed_enrollments,
            "total_certificates": counts.total_certificates,
            "total_lessons": counts.total_lessons,
            "completion_rate": _completion_rate(
                counts.completed_enrollments, counts.total_enrollments
            ),
            "recent_enrollments": counts.recent_enrollments,
        },
        "top_courses": [c.to_dict() for c in repo.top_courses()],
    }
