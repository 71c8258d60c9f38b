"""Repository functions for Academy tables.

Covers courses, lessons, enrollments, lesson_progress and certificates.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from smartpromptiq.db.database import get_db, to_db_timestamp

logger = structlog.get_logger(__name__)


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class CourseRecord:
    """Course record from database."""

    course_id: str
    slug: str
    title: str
    description: str
    category: str
    difficulty: str
    duration: int
    access_tier: str
    price_in_cents: int
    is_published: bool
    order_index: int
    instructor: str | None
    tags: list[str]
    average_rating: float
    review_count: int
    enrollment_count: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.course_id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "difficulty": self.difficulty,
            "duration": self.duration,
            "access_tier": self.access_tier,
            "price_in_cents": self.price_in_cents,
            "is_published": self.is_published,
            "order": self.order_index,
            "instructor": self.instructor,
            "tags": list(self.tags),
            "average_rating": self.average_rating,
            "review_count": self.review_count,
            "enrollment_count": self.enrollment_count,
        }


@dataclass
class LessonRecord:
    """Lesson record from database."""

    lesson_id: str
    course_id: str
    title: str
    description: str
    content: str
    duration: int
    order_index: int
    is_free: bool
    is_published: bool
    quiz: list[dict[str, Any]] | None
    created_at: str

    def to_dict(self, include_content: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.lesson_id,
            "course_id": self.course_id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "order": self.order_index,
            "is_free": self.is_free,
            "has_quiz": bool(self.quiz),
        }
        if include_content:
            data["content"] = self.content
        return data


@dataclass
class EnrollmentRecord:
    """Enrollment record from database."""

    enrollment_id: str
    user_id: str
    course_id: str
    enrollment_type: str
    status: str
    progress: int
    enrolled_at: str
    last_accessed_at: str | None
    completed_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.enrollment_id,
            "course_id": self.course_id,
            "enrollment_type": self.enrollment_type,
            "status": self.status,
            "progress": self.progress,
            "enrolled_at": self.enrolled_at,
            "last_accessed_at": self.last_accessed_at,
            "completed_at": self.completed_at,
        }


@dataclass
class LessonProgressRecord:
    """Per-user lesson progress."""

    user_id: str
    lesson_id: str
    completed: bool
    time_spent: int
    quiz_score: float | None
    rating: int | None
    feedback: str | None
    completed_at: str | None
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "completed": self.completed,
            "time_spent": self.time_spent,
            "quiz_score": self.quiz_score,
            "rating": self.rating,
            "feedback": self.feedback,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CertificateRecord:
    """Course completion certificate."""

    certificate_id: str
    user_id: str
    course_id: str
    course_title: str
    student_name: str
    issued_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.certificate_id,
            "course_id": self.course_id,
            "course_title": self.course_title,
            "student_name": self.student_name,
            "issued_at": self.issued_at,
        }


@dataclass
class AcademyCounts:
    """Aggregate counts for the admin dashboard."""

    total_courses: int = 0
    published_courses: int = 0
    total_enrollments: int = 0
    active_enrollments: int = 0
    completed_enrollments: int = 0
    total_certificates: int = 0
    total_lessons: int = 0
    recent_enrollments: int = 0


# =============================================================================
# COURSES
# =============================================================================


def insert_course(
    slug: str,
    title: str,
    description: str,
    category: str,
    difficulty: str = "beginner",
    duration: int = 0,
    access_tier: str = "free",
    price_in_cents: int = 0,
    is_published: bool = True,
    order_index: int = 0,
    instructor: str | None = None,
    tags: list[str] | None = None,
    average_rating: float = 0.0,
    review_count: int = 0,
    enrollment_count: int = 0,
) -> CourseRecord:
    """Insert a course.

    Raises:
        sqlite3.IntegrityError: If the slug already exists
    """
    course_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO courses (
                course_id, slug, title, description, category, difficulty,
                duration, access_tier, price_in_cents, is_published,
                order_index, instructor, tags, average_rating,
                review_count, enrollment_count
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                course_id,
                slug,
                title,
                description,
                category,
                difficulty,
                duration,
                access_tier,
                price_in_cents,
                1 if is_published else 0,
                order_index,
                instructor,
                json.dumps(tags or []),
                average_rating,
                review_count,
                enrollment_count,
            ),
        )
        row = conn.execute("SELECT * FROM courses WHERE course_id = ?", (course_id,)).fetchone()

    logger.debug("courses.inserted", slug=slug)
    return _row_to_course(row)


def delete_all_courses() -> int:
    """Delete every course (lessons, enrollments, progress cascade)."""
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM courses")
    return cursor.rowcount


def get_course_by_id(course_id: str) -> CourseRecord | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM courses WHERE course_id = ?", (course_id,)).fetchone()
    return _row_to_course(row) if row is not None else None


def get_course_by_slug(slug: str) -> CourseRecord | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM courses WHERE slug = ?", (slug,)).fetchone()
    return _row_to_course(row) if row is not None else None


def _course_filters(
    category: str | None, difficulty: str | None, access_tier: str | None
) -> tuple[list[str], list[Any]]:
    clauses = ["is_published = 1"]
    params: list[Any] = []
    if category:
        clauses.append("category = ?")
        params.append(category)
    if difficulty:
        clauses.append("difficulty = ?")
        params.append(difficulty)
    if access_tier:
        clauses.append("access_tier = ?")
        params.append(access_tier)
    return clauses, params


def list_courses(
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = None,
) -> list[CourseRecord]:
    """Published courses, ordered by order_index then newest."""
    clauses, params = _course_filters(category, difficulty, access_tier)
    with get_db() as conn:
        rows = conn.execute(
            f"SELECT * FROM courses WHERE {' AND '.join(clauses)} "
            "ORDER BY order_index ASC, created_at DESC",
            params,
        ).fetchall()
    return [_row_to_course(row) for row in rows]


def search_courses(
    term: str,
    category: str | None = None,
    difficulty: str | None = None,
    access_tier: str | None = None,
    limit: int = 20,
) -> list[CourseRecord]:
    """Case-insensitive match on title, description, tags and instructor."""
    clauses, params = _course_filters(category, difficulty, access_tier)
    pattern = f"%{term.lower()}%"
    clauses.append(
        "(lower(title) LIKE ? OR lower(description) LIKE ? "
        "OR lower(tags) LIKE ? OR lower(coalesce(instructor, '')) LIKE ?)"
    )
    params.extend([pattern] * 4)
    params.append(limit)
    with get_db() as conn:
        rows = conn.execute(
            f"SELECT * FROM courses WHERE {' AND '.join(clauses)} "
            "ORDER BY enrollment_count DESC, average_rating DESC LIMIT ?",
            params,
        ).fetchall()
    return [_row_to_course(row) for row in rows]


def top_courses(limit: int = 5) -> list[CourseRecord]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM courses WHERE is_published = 1 ORDER BY enrollment_count DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [_row_to_course(row) for row in rows]


# =============================================================================
# LESSONS
# =============================================================================


def insert_lesson(
    course_id: str,
    title: str,
    description: str = "",
    content: str = "",
    duration: int = 0,
    order_index: int = 0,
    is_free: bool = False,
    is_published: bool = True,
    quiz: list[dict[str, Any]] | None = None,
) -> LessonRecord:
    lesson_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lessons (
                lesson_id, course_id, title, description, content,
                duration, order_index, is_free, is_published, quiz
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                lesson_id,
                course_id,
                title,
                description,
                content,
                duration,
                order_index,
                1 if is_free else 0,
                1 if is_published else 0,
                json.dumps(quiz) if quiz is not None else None,
            ),
        )
        row = conn.execute("SELECT * FROM lessons WHERE lesson_id = ?", (lesson_id,)).fetchone()

    logger.debug("lessons.inserted", course_id=course_id, lesson_id=lesson_id)
    return _row_to_lesson(row)


def get_lesson(lesson_id: str) -> LessonRecord | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM lessons WHERE lesson_id = ?", (lesson_id,)).fetchone()
    return _row_to_lesson(row) if row is not None else None


def list_lessons(course_id: str, published_only: bool = True) -> list[LessonRecord]:
    """Lessons of a course in display order."""
    query = "SELECT * FROM lessons WHERE course_id = ?"
    if published_only:
        query += " AND is_published = 1"
    query += " ORDER BY order_index ASC"
    with get_db() as conn:
        rows = conn.execute(query, (course_id,)).fetchall()
    return [_row_to_lesson(row) for row in rows]


def search_lessons(term: str, limit: int = 20) -> list[LessonRecord]:
    pattern = f"%{term.lower()}%"
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM lessons
            WHERE is_published = 1
              AND (lower(title) LIKE ? OR lower(description) LIKE ? OR lower(content) LIKE ?)
            ORDER BY order_index
            LIMIT ?
            """,
            (pattern, pattern, pattern, limit),
        ).fetchall()
    return [_row_to_lesson(row) for row in rows]


# =============================================================================
# ENROLLMENTS
# =============================================================================


def create_enrollment(
    user_id: str, course_id: str, enrollment_type: str = "free"
) -> EnrollmentRecord:
    """Enroll a user and bump the course's enrollment count.

    Raises:
        sqlite3.IntegrityError: If the user is already enrolled
    """
    enrollment_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO enrollments (enrollment_id, user_id, course_id, enrollment_type, status)
            VALUES (?, ?, ?, ?, 'active')
            """,
            (enrollment_id, user_id, course_id, enrollment_type),
        )
        conn.execute(
            "UPDATE courses SET enrollment_count = enrollment_count + 1 WHERE course_id = ?",
            (course_id,),
        )
        row = conn.execute(
            "SELECT * FROM enrollments WHERE enrollment_id = ?", (enrollment_id,)
        ).fetchone()

    logger.debug("enrollments.inserted", user_id=user_id, course_id=course_id)
    return _row_to_enrollment(row)


def get_enrollment(user_id: str, course_id: str) -> EnrollmentRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM enrollments WHERE user_id = ? AND course_id = ?",
            (user_id, course_id),
        ).fetchone()
    return _row_to_enrollment(row) if row is not None else None


def list_enrollments(user_id: str) -> list[EnrollmentRecord]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM enrollments WHERE user_id = ? ORDER BY enrolled_at DESC, rowid DESC",
            (user_id,),
        ).fetchall()
    return [_row_to_enrollment(row) for row in rows]


def update_enrollment_progress(
    user_id: str, course_id: str, progress: int, completed: bool
) -> None:
    now = to_db_timestamp()
    with get_db() as conn:
        conn.execute(
            """
            UPDATE enrollments SET
                progress = ?,
                status = ?,
                completed_at = ?,
                last_accessed_at = ?
            WHERE user_id = ? AND course_id = ?
            """,
            (
                progress,
                "completed" if completed else "active",
                now if completed else None,
                now,
                user_id,
                course_id,
            ),
        )


# =============================================================================
# PROGRESS
# =============================================================================


def upsert_progress(
    user_id: str,
    lesson_id: str,
    completed: bool,
    time_spent: int = 0,
    quiz_score: float | None = None,
) -> LessonProgressRecord:
    """Create or update a progress row. time_spent accumulates."""
    now = to_db_timestamp()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lesson_progress (
                user_id, lesson_id, completed, time_spent, quiz_score, completed_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                completed = excluded.completed,
                time_spent = lesson_progress.time_spent + excluded.time_spent,
                quiz_score = coalesce(excluded.quiz_score, lesson_progress.quiz_score),
                completed_at = coalesce(excluded.completed_at, lesson_progress.completed_at),
                updated_at = excluded.updated_at
            """,
            (
                user_id,
                lesson_id,
                1 if completed else 0,
                time_spent,
                quiz_score,
                now if completed else None,
                now,
            ),
        )
        row = conn.execute(
            "SELECT * FROM lesson_progress WHERE user_id = ? AND lesson_id = ?",
            (user_id, lesson_id),
        ).fetchone()
    return _row_to_progress(row)


def set_rating(
    user_id: str, lesson_id: str, rating: int, feedback: str | None
) -> LessonProgressRecord:
    """Create or update the rating on a progress row."""
    now = to_db_timestamp()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lesson_progress (user_id, lesson_id, rating, feedback, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                rating = excluded.rating,
                feedback = excluded.feedback,
                updated_at = excluded.updated_at
            """,
            (user_id, lesson_id, rating, feedback, now),
        )
        row = conn.execute(
            "SELECT * FROM lesson_progress WHERE user_id = ? AND lesson_id = ?",
            (user_id, lesson_id),
        ).fetchone()
    return _row_to_progress(row)


def get_progress(user_id: str, lesson_id: str) -> LessonProgressRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM lesson_progress WHERE user_id = ? AND lesson_id = ?",
            (user_id, lesson_id),
        ).fetchone()
    return _row_to_progress(row) if row is not None else None


def count_completed_lessons(user_id: str, course_id: str | None = None) -> int:
    """Completed published lessons, optionally within one course."""
    query = """
        SELECT COUNT(*) FROM lesson_progress p
        JOIN lessons l ON l.lesson_id = p.lesson_id
        WHERE p.user_id = ? AND p.completed = 1 AND l.is_published = 1
    """
    params: list[Any] = [user_id]
    if course_id is not None:
        query += " AND l.course_id = ?"
        params.append(course_id)
    with get_db() as conn:
        return conn.execute(query, params).fetchone()[0]


def list_recent_progress(user_id: str, limit: int = 10) -> list[LessonProgressRecord]:
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM lesson_progress
            WHERE user_id = ?
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
    return [_row_to_progress(row) for row in rows]


# =============================================================================
# CERTIFICATES
# =============================================================================


def insert_certificate(
    user_id: str, course_id: str, course_title: str, student_name: str
) -> CertificateRecord:
    certificate_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO certificates (certificate_id, user_id, course_id, course_title, student_name)
            VALUES (?, ?, ?, ?, ?)
            """,
            (certificate_id, user_id, course_id, course_title, student_name),
        )
        row = conn.execute(
            "SELECT * FROM certificates WHERE certificate_id = ?", (certificate_id,)
        ).fetchone()

    logger.info("certificates.issued", user_id=user_id, course_id=course_id)
    return _row_to_certificate(row)


def get_certificate(user_id: str, course_id: str) -> CertificateRecord | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM certificates WHERE user_id = ? AND course_id = ?",
            (user_id, course_id),
        ).fetchone()
    return _row_to_certificate(row) if row is not None else None


def list_certificates(user_id: str) -> list[CertificateRecord]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM certificates WHERE user_id = ? ORDER BY issued_at DESC",
            (user_id,),
        ).fetchall()
    return [_row_to_certificate(row) for row in rows]


# =============================================================================
# STATS
# =============================================================================


def academy_counts(recent_since: str) -> AcademyCounts:
    """Aggregate counts; recent_enrollments counts rows since recent_since."""
    with get_db() as conn:

        def scalar(query: str, params: tuple = ()) -> int:
            return conn.execute(query, params).fetchone()[0]

        return AcademyCounts(
            total_courses=scalar("SELECT COUNT(*) FROM courses"),
            published_courses=scalar("SELECT COUNT(*) FROM courses WHERE is_published = 1"),
            total_enrollments=scalar("SELECT COUNT(*) FROM enrollments"),
            active_enrollments=scalar(
                "SELECT COUNT(*) FROM enrollments WHERE status = 'active'"
            ),
            completed_enrollments=scalar(
                "SELECT COUNT(*) FROM enrollments WHERE status = 'completed'"
            ),
            total_certificates=scalar("SELECT COUNT(*) FROM certificates"),
            total_lessons=scalar("SELECT COUNT(*) FROM lessons WHERE is_published = 1"),
            recent_enrollments=scalar(
                "SELECT COUNT(*) FROM enrollments WHERE enrolled_at >= ?", (recent_since,)
            ),
        )


# =============================================================================
# ROW CONVERSION
# =============================================================================


def _row_to_course(row) -> CourseRecord:
    return CourseRecord(
        course_id=row["course_id"],
        slug=row["slug"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        difficulty=row["difficulty"],
        duration=row["duration"],
        access_tier=row["access_tier"],
        price_in_cents=row["price_in_cents"],
        is_published=bool(row["is_published"]),
        order_index=row["order_index"],
        instructor=row["instructor"],
        tags=json.loads(row["tags"] or "[]"),
        average_rating=row["average_rating"],
        review_count=row["review_count"],
        enrollment_count=row["enrollment_count"],
        created_at=row["created_at"],
    )


def _row_to_lesson(row) -> LessonRecord:
    return LessonRecord(
        lesson_id=row["lesson_id"],
        course_id=row["course_id"],
        title=row["title"],
        description=row["description"],
        content=row["content"],
        duration=row["duration"],
        order_index=row["order_index"],
        is_free=bool(row["is_free"]),
        is_published=bool(row["is_published"]),
        quiz=json.loads(row["quiz"]) if row["quiz"] else None,
        created_at=row["created_at"],
    )


def _row_to_enrollment(row) -> EnrollmentRecord:
    return EnrollmentRecord(
        enrollment_id=row["enrollment_id"],
        user_id=row["user_id"],
        course_id=row["course_id"],
        enrollment_type=row["enrollment_type"],
        status=row["status"],
        progress=row["progress"],
        enrolled_at=row["enrolled_at"],
        last_accessed_at=row["last_accessed_at"],
        completed_at=row["completed_at"],
    )


def _row_to_progress(row) -> LessonProgressRecord:
    return LessonProgressRecord(
        user_id=row["user_id"],
        lesson_id=row["lesson_id"],
        completed=bool(row["completed"]),
        time_spent=row["time_spent"],
        quiz_score=row["quiz_score"],
        rating=row["rating"],
        feedback=row["feedback"],
        completed_at=row["completed_at"],
        updated_at=row["updated_at"],
    )


def _row_to_certificate(row) -> CertificateRecord:
    return CertificateRecord(
        certificate_id=row["certificate_id"],
        user_id=row["user_id"],
        course_id=row["course_id"],
        course_title=row["course_title"],
        student_name=row["student_name"],
        issued_at=row["issued_at"],
    )
