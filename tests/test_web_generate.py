"""Tests for generation endpoints."""

import time

from smartpromptiq.db import users_repository
from smartpromptiq.db.generations_repository import list_generations
from smartpromptiq.llm.client import LLMConnectionError

GENERATE_BODY = {
    "category": "business",
    "answers": {"industry": "SaaS", "stage": "seed"},
    "customization": {"tone": "confident", "detailLevel": "high"},
}

REFINE_BODY = {
    "currentPrompt": "# Executive Summary\n- Generated prompt",
    "refinementQuery": "Add a hiring plan",
    "category": "business",
    "originalAnswers": {"industry": "SaaS"},
    "history": [{"question": "Make it shorter"}],
}


class TestGenerate:
    """Tests for POST /api/generate."""

    def test_generate_charges_tokens(self, client, make_user, auth_headers, fake_llm):
        """A signed-in generation is charged by complexity."""
        user = make_user(tier="pro", balance=20)

        response = client.post("/api/generate", json=GENERATE_BODY, headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()
        assert data["content"].startswith("# Executive Summary")
        assert data["model"] == "test-model"
        assert data["tokens_consumed"] == 3
        assert data["token_balance"] == 17
        assert data["low_balance"] is False
        assert data["sections"][0] == "Executive Summary"

        user_prompt = fake_llm.chat.call_args.args[0][1].content
        assert "Use a confident tone." in user_prompt
        assert "Provide high level of detail." in user_prompt

        generation = list_generations(user.user_id)[0]
        assert generation.tokens_used == 3
        assert generation.kind == "generate"

    def test_complexity_sets_price(self, client, make_user, auth_headers):
        user = make_user(tier="pro", balance=20)

        data = client.post(
            "/api/generate",
            json={**GENERATE_BODY, "complexity": "complex"},
            headers=auth_headers(user),
        ).json()

        assert data["tokens_consumed"] == 7

    def test_unknown_complexity_rejected(self, client, make_user, auth_headers, fake_llm):
        """An unpriced complexity is refused instead of charged as standard."""
        user = make_user(tier="pro", balance=20)

        response = client.post(
            "/api/generate",
            json={**GENERATE_BODY, "complexity": "enterprise"},
            headers=auth_headers(user),
        )

        assert response.status_code == 422
        assert users_repository.get_user_by_id(user.user_id).token_balance == 20
        fake_llm.chat.assert_not_called()

    def test_cached_result_still_charged(self, client, make_user, auth_headers, fake_llm):
        """Cache hits skip the LLM but not the charge."""
        user = make_user(tier="pro", balance=20)
        headers = auth_headers(user)

        client.post("/api/generate", json=GENERATE_BODY, headers=headers)
        second = client.post("/api/generate", json=GENERATE_BODY, headers=headers).json()

        assert second["cached"] is True
        assert second["token_balance"] == 14
        assert fake_llm.chat.call_count == 1

    def test_low_balance_flag(self, client, make_user, auth_headers):
        user = make_user(tier="pro", balance=7)

        data = client.post("/api/generate", json=GENERATE_BODY, headers=auth_headers(user)).json()

        assert data["token_balance"] == 4
        assert data["low_balance"] is True

    def test_anonymous_not_charged(self, client):
        """Anonymous generations are recorded without a charge."""
        response = client.post("/api/generate", json=GENERATE_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["tokens_consumed"] == 0
        assert data["token_balance"] is None

    def test_unknown_category(self, client, fake_llm):
        response = client.post("/api/generate", json={**GENERATE_BODY, "category": "astrology"})

        assert response.status_code == 400
        fake_llm.chat.assert_not_called()


class TestLimits:
    """Tests for rate limiting and token checks."""

    def test_anonymous_rate_limit(self, client):
        """The second anonymous request in an hour is rejected."""
        client.post("/api/generate", json=GENERATE_BODY)

        response = client.post("/api/generate", json=GENERATE_BODY)

        assert response.status_code == 429
        detail = response.json()["detail"]
        assert detail["limit_type"] == "hourly"
        assert int(response.headers["Retry-After"]) == detail["retry_after"]

    def test_free_tier_hourly_limit(self, client, make_user, auth_headers):
        user = make_user(tier="free", balance=50)
        headers = auth_headers(user)
        body = {**GENERATE_BODY, "complexity": "simple"}

        assert client.post("/api/generate", json=body, headers=headers).status_code == 200
        assert client.post("/api/generate", json=body, headers=headers).status_code == 200
        assert client.post("/api/generate", json=body, headers=headers).status_code == 429

    def test_insufficient_tokens(self, client, make_user, auth_headers, fake_llm):
        """Users who can't pay get 402 before the LLM is called."""
        user = make_user(tier="pro", balance=1)

        response = client.post("/api/generate", json=GENERATE_BODY, headers=auth_headers(user))

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["message"] == "Insufficient tokens"
        assert detail["tokens_needed"] == 3
        assert detail["shortfall"] == 2
        fake_llm.chat.assert_not_called()

    def test_monthly_allowance_exhausted(self, client, make_user, auth_headers):
        user = make_user(tier="free", balance=50)
        body = {**GENERATE_BODY, "complexity": "complex"}

        response = client.post("/api/generate", json=body, headers=auth_headers(user))

        assert response.status_code == 402
        assert response.json()["detail"]["message"] == "Monthly token limit exceeded"
        assert users_repository.get_user_by_id(user.user_id).token_balance == 50


class TestQueueFailures:
    """Tests for timeouts and provider failures."""

    def test_timeout(self, client, make_user, auth_headers, fake_llm, fast_queue):
        """A generation that outlives the queue timeout returns 408 uncharged."""
        user = make_user(tier="pro", balance=20)
        fast_queue.default_timeout = 0.05

        def slow(*args, **kwargs):
            time.sleep(0.3)

        fake_llm.chat.side_effect = slow

        response = client.post("/api/generate", json=GENERATE_BODY, headers=auth_headers(user))

        assert response.status_code == 408
        assert response.json()["detail"]["code"] == "GENERATION_TIMEOUT"
        assert users_repository.get_user_by_id(user.user_id).token_balance == 20

    def test_provider_failure(self, client, make_user, auth_headers, fake_llm, fast_queue):
        """Failures are retried, then reported as 502 without a charge."""
        user = make_user(tier="pro", balance=20)
        fake_llm.chat.side_effect = LLMConnectionError("down")

        response = client.post("/api/generate", json=GENERATE_BODY, headers=auth_headers(user))

        assert response.status_code == 502
        assert fake_llm.chat.call_count == fast_queue.max_retries
        assert users_repository.get_user_by_id(user.user_id).token_balance == 20


class TestRefine:
    """Tests for POST /api/refine."""

    def test_refine(self, client, make_user, auth_headers, fake_llm):
        user = make_user(tier="pro", balance=20)

        response = client.post("/api/refine", json=REFINE_BODY, headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["tokens_consumed"] == 1
        user_prompt = fake_llm.chat.call_args.args[0][1].content
        assert 'User refinement request: "Add a hiring plan"' in user_prompt
        assert "Q: Make it shorter" in user_prompt
        assert list_generations(user.user_id)[0].kind == "refine"

    def test_refine_requires_query(self, client):
        response = client.post("/api/refine", json={**REFINE_BODY, "refinementQuery": ""})
        assert response.status_code == 422

    def test_refine_unknown_complexity_rejected(self, client):
        response = client.post("/api/refine", json={**REFINE_BODY, "complexity": "huge"})
        assert response.status_code == 422


class TestSuggestions:
    """Tests for GET /api/suggestions."""

    def test_suggestions(self, client):
        data = client.get("/api/suggestions", params={"q": "api"}).json()
        assert data["count"] == 8
        assert data["suggestions"][0]["id"] == "api_design"

    def test_category_filter(self, client):
        data = client.get("/api/suggestions", params={"category": "marketing"}).json()
        assert {s["category"] for s in data["suggestions"]} == {"marketing"}

    def test_unknown_category(self, client):
        assert client.get("/api/suggestions", params={"category": "astrology"}).status_code == 400
