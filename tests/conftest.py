"""Shared fixtures.

Every test gets its own SQLite database and fresh process-wide singletons
(config, caches, A/B service, rate limiter, request queue).
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from smartpromptiq.config.app_config import clear_config_cache
from smartpromptiq.core import request_queue
from smartpromptiq.core.ab_testing import reset_ab_service
from smartpromptiq.core.cache import reset_caches
from smartpromptiq.core.rate_limiter import reset_rate_limiter
from smartpromptiq.core.security import create_access_token, hash_password
from smartpromptiq.db import users_repository
from smartpromptiq.db.database import init_db
from smartpromptiq.llm.client import LLMClient, LLMConfig, LLMResponse
from smartpromptiq.prompts.registry import clear_cache as clear_prompt_cache
from smartpromptiq.web.api import create_app
from smartpromptiq.web.deps import get_llm_client

TEST_PASSWORD = "correct-horse-battery"


def _reset_singletons() -> None:
    clear_config_cache()
    reset_caches()
    reset_ab_service()
    reset_rate_limiter()
    request_queue.reset_request_queue()
    clear_prompt_cache()


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Fresh database, secrets and singletons for each test."""
    monkeypatch.setenv("SPIQ_JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("SPIQ_SEED_SECRET", "test-seed-secret")
    _reset_singletons()
    db_path = tmp_path / "smartpromptiq.db"
    init_db(db_path)
    yield db_path
    _reset_singletons()


@pytest.fixture
def fast_queue(monkeypatch):
    """Install a request queue without backoff delays."""
    queue = request_queue.RequestQueue(
        max_concurrent=2, max_retries=2, backoff_seconds=0, default_timeout=5.0
    )
    monkeypatch.setattr(request_queue, "_request_queue", queue)
    return queue


@pytest.fixture
def make_user():
    """Factory creating users directly in the database."""
    counter = {"n": 0}

    def _make(
        email: str | None = None,
        tier: str = "free",
        balance: int = 50,
        role: str = "user",
        password: str = TEST_PASSWORD,
    ) -> users_repository.UserRecord:
        counter["n"] += 1
        return users_repository.create_user(
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(password),
            first_name="Test",
            last_name=f"User{counter['n']}",
            role=role,
            subscription_tier=tier,
            token_balance=balance,
        )

    return _make


def _auth_headers(user: users_repository.UserRecord) -> dict[str, str]:
    token = create_access_token(user.user_id, {"email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Bearer header builder for a user."""
    return _auth_headers


def fake_response(content: str, model: str = "test-model", tokens: int = 42) -> LLMResponse:
    return LLMResponse(
        content=content,
        model=model,
        provider="openai",
        usage={"prompt_tokens": 10, "completion_tokens": tokens - 10, "total_tokens": tokens},
    )


@pytest.fixture
def fake_llm():
    """LLMClient double whose chat() returns a canned prompt."""
    client = MagicMock(spec=LLMClient)
    client.config = LLMConfig(provider="openai", model="test-model")
    client.chat.return_value = fake_response("# Executive Summary\n- Generated prompt")
    return client


@pytest.fixture
def client(isolated_state, fake_llm, fast_queue):
    """TestClient over a fresh app with the fake LLM installed."""
    app = create_app(db_path=isolated_state)
    app.dependency_overrides[get_llm_client] = lambda: fake_llm
    with TestClient(app) as test_client:
        yield test_client
