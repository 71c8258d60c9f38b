"""Tests for Academy endpoints."""

import pytest

from smartpromptiq.core import academy
from smartpromptiq.db import academy_repository


@pytest.fixture
def seeded(client):
    academy.seed_courses()
    return client


def _lesson_ids() -> list[str]:
    course = academy_repository.get_course_by_slug("ai-agents-masterclass")
    return [lesson.lesson_id for lesson in academy_repository.list_lessons(course.course_id)]


def _paid_lesson_id() -> str:
    course = academy_repository.get_course_by_slug("advanced-prompt-patterns")
    return academy_repository.insert_lesson(course.course_id, "Prompt Chaining").lesson_id


class TestCatalogEndpoints:
    """Tests for public catalog endpoints."""

    def test_list_courses(self, seeded):
        """List returns every published course."""
        data = seeded.get("/api/academy/courses").json()
        assert data["count"] == 8

    def test_filter_by_access_tier(self, seeded):
        data = seeded.get("/api/academy/courses", params={"accessTier": "pro"}).json()
        assert [c["slug"] for c in data["courses"]] == ["advanced-prompt-patterns"]

    def test_search(self, seeded):
        response = seeded.get("/api/academy/search", params={"q": "agents"})
        assert response.status_code == 200
        assert response.json()["courses"]["count"] >= 2

    def test_search_too_short(self, seeded):
        """Queries under two characters are a bad request."""
        response = seeded.get("/api/academy/search", params={"q": "a"})
        assert response.status_code == 400

    def test_course_detail(self, seeded):
        data = seeded.get("/api/academy/courses/ai-agents-masterclass").json()
        assert len(data["lessons"]) == 6

    def test_course_not_found(self, seeded):
        assert seeded.get("/api/academy/courses/nope").status_code == 404


class TestEnrollEndpoint:
    """Tests for POST /api/academy/enroll."""

    def test_requires_auth(self, seeded):
        response = seeded.post("/api/academy/enroll", json={"courseSlug": "prompt-writing-101"})
        assert response.status_code == 401

    def test_enroll_and_list(self, seeded, make_user, auth_headers):
        """Enrolled courses show up under my-courses."""
        headers = auth_headers(make_user())

        response = seeded.post(
            "/api/academy/enroll", json={"courseSlug": "prompt-writing-101"}, headers=headers
        )

        assert response.status_code == 201
        mine = seeded.get("/api/academy/my-courses", headers=headers).json()
        assert mine["count"] == 1
        assert mine["enrollments"][0]["course"]["slug"] == "prompt-writing-101"

    def test_enroll_twice(self, seeded, make_user, auth_headers):
        headers = auth_headers(make_user())
        body = {"courseSlug": "prompt-writing-101"}
        seeded.post("/api/academy/enroll", json=body, headers=headers)

        response = seeded.post("/api/academy/enroll", json=body, headers=headers)

        assert response.status_code == 409

    def test_tier_too_low(self, seeded, make_user, auth_headers):
        response = seeded.post(
            "/api/academy/enroll",
            json={"courseSlug": "advanced-prompt-patterns"},
            headers=auth_headers(make_user(tier="starter")),
        )
        assert response.status_code == 403

    def test_unknown_course(self, seeded, make_user, auth_headers):
        response = seeded.post(
            "/api/academy/enroll",
            json={"courseSlug": "nope"},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 404


class TestLessonEndpoints:
    """Tests for lesson, progress, rating and quiz endpoints."""

    def test_free_lesson_public(self, seeded):
        response = seeded.get(f"/api/academy/lesson/{_lesson_ids()[0]}")
        assert response.status_code == 200
        assert response.json()["lesson"]["is_free"] is True

    def test_paid_lesson_anonymous(self, seeded):
        """Anonymous callers are asked to authenticate."""
        response = seeded.get(f"/api/academy/lesson/{_paid_lesson_id()}")
        assert response.status_code == 401

    def test_paid_lesson_not_enrolled(self, seeded, make_user, auth_headers):
        response = seeded.get(
            f"/api/academy/lesson/{_paid_lesson_id()}",
            headers=auth_headers(make_user(tier="pro")),
        )
        assert response.status_code == 403

    def test_progress(self, seeded, make_user, auth_headers):
        headers = auth_headers(make_user())
        seeded.post("/api/academy/enroll", json={"courseSlug": "ai-agents-masterclass"}, headers=headers)

        response = seeded.post(
            f"/api/academy/progress/{_lesson_ids()[0]}",
            json={"completed": True, "timeSpent": 300},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["progress"]["time_spent"] == 300
        assert data["enrollment"]["progress"] == 17

    def test_progress_unknown_lesson(self, seeded, make_user, auth_headers):
        response = seeded.post(
            "/api/academy/progress/missing",
            json={"completed": True},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 404

    def test_rating(self, seeded, make_user, auth_headers):
        response = seeded.post(
            f"/api/academy/lesson/{_lesson_ids()[0]}/rating",
            json={"rating": 4, "feedback": "Useful"},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 200
        assert response.json() == {"rating": 4, "feedback": "Useful"}

    def test_rating_out_of_range(self, seeded, make_user, auth_headers):
        response = seeded.post(
            f"/api/academy/lesson/{_lesson_ids()[0]}/rating",
            json={"rating": 9},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 400

    def test_quiz_anonymous(self, seeded):
        """Free lesson quizzes can be graded without an account."""
        response = seeded.post(
            f"/api/academy/lesson/{_lesson_ids()[2]}/quiz", json={"answers": [1, True]}
        )
        assert response.status_code == 200
        assert response.json()["passed"] is True

    def test_quiz_on_lesson_without_quiz(self, seeded):
        response = seeded.post(f"/api/academy/lesson/{_lesson_ids()[0]}/quiz", json={"answers": []})
        assert response.status_code == 400

    def test_quiz_on_locked_lesson(self, seeded):
        response = seeded.post(f"/api/academy/lesson/{_paid_lesson_id()}/quiz", json={"answers": []})
        assert response.status_code == 401


class TestDashboardAndAdmin:
    """Tests for dashboards, admin stats and seeding."""

    def test_dashboard(self, seeded, make_user, auth_headers):
        headers = auth_headers(make_user())
        seeded.post("/api/academy/enroll", json={"courseSlug": "prompt-writing-101"}, headers=headers)

        data = seeded.get("/api/academy/dashboard", headers=headers).json()

        assert data["stats"]["courses_enrolled"] == 1

    def test_admin_stats_requires_admin(self, seeded, make_user, auth_headers):
        response = seeded.get("/api/academy/admin/stats", headers=auth_headers(make_user()))
        assert response.status_code == 403

    def test_admin_stats(self, seeded, make_user, auth_headers):
        response = seeded.get(
            "/api/academy/admin/stats", headers=auth_headers(make_user(role="admin"))
        )
        assert response.status_code == 200
        assert response.json()["overview"]["total_courses"] == 8

    def test_seed_with_secret(self, client):
        response = client.post("/api/academy/seed-courses", json={"secret": "test-seed-secret"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "courses": 8}

    def test_seed_wrong_secret(self, client):
        response = client.post("/api/academy/seed-courses", json={"secret": "guess"})
        assert response.status_code == 403
        assert client.get("/api/academy/courses").json()["count"] == 0

    def test_seed_locked_without_secrets(self, seeded, make_user, auth_headers, monkeypatch):
        """With no secret configured, no guess can wipe the catalog."""
        user = make_user()
        seeded.post(
            "/api/academy/enroll",
            json={"courseSlug": "prompt-writing-101"},
            headers=auth_headers(user),
        )
        monkeypatch.delenv("SPIQ_SEED_SECRET")
        monkeypatch.delenv("SPIQ_JWT_SECRET")

        for guess in ("change-me", ""):
            response = seeded.post("/api/academy/seed-courses", json={"secret": guess})
            assert response.status_code == 403

        assert len(academy_repository.list_enrollments(user.user_id)) == 1
