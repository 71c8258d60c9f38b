"""Tests for spiq CLI commands."""

from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

from smartpromptiq.cli.commands import app
from smartpromptiq.core import token_manager
from smartpromptiq.core.ab_testing import get_ab_service, reset_ab_service
from smartpromptiq.db import academy_repository, users_repository

runner = CliRunner()


@pytest.fixture
def db_args(isolated_state):
    return ["--db", str(isolated_state)]


class TestDatabaseCommands:
    """Tests for init-db and seed-academy."""

    def test_init_db(self, tmp_path):
        db_path = tmp_path / "other" / "spiq.db"

        result = runner.invoke(app, ["init-db", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout
        assert db_path.exists()

    def test_seed_academy(self, db_args):
        result = runner.invoke(app, ["seed-academy", *db_args])

        assert result.exit_code == 0
        assert "Seeded 8 courses" in result.stdout
        assert len(academy_repository.list_courses()) == 8


class TestPricingCommands:
    """Tests for pricing and optimal-cost."""

    def test_pricing_tables(self):
        result = runner.invoke(app, ["pricing"])

        assert result.exit_code == 0
        assert "Token packages" in result.stdout
        assert "enterprise" in result.stdout

    def test_optimal_cost(self):
        result = runner.invoke(app, ["optimal-cost", "1500"])

        assert result.exit_code == 0
        assert "Total: $229.98 for 1500 tokens" in result.stdout

    def test_optimal_cost_invalid(self):
        result = runner.invoke(app, ["optimal-cost", "--", "-5"])
        assert result.exit_code == 1


class TestUserCommands:
    """Tests for create-user and token administration."""

    def test_create_user(self, db_args):
        result = runner.invoke(
            app,
            ["create-user", "ada@example.com", "--password", "s3cret-pass", "--tier", "starter", *db_args],
        )

        assert result.exit_code == 0
        user = users_repository.get_user_by_email("ada@example.com")
        assert user.subscription_tier == "starter"
        assert user.token_balance == 50
        assert user.role == "user"

    def test_create_admin(self, db_args):
        runner.invoke(
            app, ["create-user", "root@example.com", "--password", "s3cret-pass", "--admin", *db_args]
        )
        assert users_repository.get_user_by_email("root@example.com").role == "admin"

    def test_create_user_unknown_tier(self, db_args):
        result = runner.invoke(
            app, ["create-user", "ada@example.com", "--password", "x" * 10, "--tier", "gold", *db_args]
        )
        assert result.exit_code == 1
        assert users_repository.get_user_by_email("ada@example.com") is None

    def test_create_user_twice(self, db_args):
        args = ["create-user", "ada@example.com", "--password", "s3cret-pass", *db_args]
        runner.invoke(app, args)

        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "already exists" in result.stdout

    def test_tokens_add_and_balance(self, make_user, db_args):
        """Tokens can be credited by email and show in the balance."""
        user = make_user(email="ada@example.com", balance=10)

        added = runner.invoke(app, ["tokens-add", "ada@example.com", "15", *db_args])
        balance = runner.invoke(app, ["tokens-balance", user.user_id, *db_args])

        assert added.exit_code == 0
        assert "New balance: 25" in added.stdout
        assert balance.exit_code == 0
        assert "25" in balance.stdout

    def test_tokens_add_rejects_bad_type(self, make_user, db_args):
        user = make_user(balance=10)

        result = runner.invoke(app, ["tokens-add", user.user_id, "5", "--type", "usage", *db_args])

        assert result.exit_code == 1
        assert users_repository.get_user_by_id(user.user_id).token_balance == 10

    def test_unknown_user(self, db_args):
        result = runner.invoke(app, ["tokens-balance", "ghost@example.com", *db_args])
        assert result.exit_code == 1
        assert "User not found" in result.stdout

    def test_expire_tokens(self, make_user, db_args):
        """Expired credits are removed from the balance."""
        user = make_user(balance=0)
        token_manager.add_tokens(
            user.user_id,
            20,
            type="purchase",
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )

        result = runner.invoke(app, ["expire-tokens", *db_args])

        assert result.exit_code == 0
        assert "Expired 1 credits, removed 20 tokens" in result.stdout
        assert users_repository.get_user_by_id(user.user_id).token_balance == 0


class TestABCommands:
    """Tests for ab-assign and ab-results."""

    def test_assign_all_tests(self):
        result = runner.invoke(app, ["ab-assign", "user-1"])

        assert result.exit_code == 0
        assert "onboarding_flow_v1" in result.stdout
        assert "pricing_display_v1" in result.stdout

    def test_assign_unknown_test(self):
        result = runner.invoke(app, ["ab-assign", "user-1", "nope"])
        assert result.exit_code == 1

    def test_results(self, db_args):
        result = runner.invoke(app, ["ab-results", "pricing_display_v1", *db_args])
        assert result.exit_code == 0
        assert "0 users, 0 events" in result.stdout

    def test_results_include_events_tracked_elsewhere(self, db_args):
        """Events tracked by the server show up in a fresh CLI run."""
        service = get_ab_service()
        service.track_event("u1", "onboarding_flow_v1", "view")
        service.track_event("u1", "onboarding_flow_v1", "signup")
        service.track_event("u2", "onboarding_flow_v1", "view")
        reset_ab_service()

        result = runner.invoke(app, ["ab-results", "onboarding_flow_v1", *db_args])

        assert result.exit_code == 0
        assert "2 users, 3 events" in result.stdout

    def test_results_unknown_test(self, db_args):
        result = runner.invoke(app, ["ab-results", "nope", *db_args])
        assert result.exit_code == 1
