"""Tests for app configuration and the pricing catalog."""

import pytest

from smartpromptiq.config import app_config
from smartpromptiq.config.app_config import (
    AppConfig,
    ConfigError,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)
from smartpromptiq.config.pricing import (
    MAX_TOKEN_PURCHASE,
    SUBSCRIPTION_TIERS,
    TOKEN_CONSUMPTION,
    TOKEN_PACKAGES,
    UNLIMITED,
    PricingError,
    calculate_optimal_token_cost,
    calculate_token_price,
    get_package,
    get_tier,
)


class TestLoadAppConfig:
    """Tests for load_app_config."""

    def test_defaults_when_file_missing(self, tmp_path, monkeypatch):
        """Built-in defaults apply without a YAML file."""
        monkeypatch.setattr(app_config, "CONFIG_FILE", tmp_path / "missing.yaml")
        clear_config_cache()

        config = load_app_config()

        assert isinstance(config, AppConfig)
        assert config.default_provider == "anthropic"
        assert set(config.providers) == {"anthropic", "openai", "lmstudio"}
        assert config.queue.max_concurrent == 3
        assert config.queue.max_retries == 3
        assert config.cache.ttl_for("ai") == 6 * 60 * 60
        assert config.billing.token_expiry_days == 90

    def test_yaml_overrides_defaults(self, tmp_path, monkeypatch):
        """Sections in the YAML file override only the keys they set."""
        config_file = tmp_path / "app_config_v1.yaml"
        config_file.write_text(
            """
default_provider: lmstudio
queue:
  max_concurrent: 7
cache:
  ttls:
    user: 60
""",
            encoding="utf-8",
        )
        monkeypatch.setattr(app_config, "CONFIG_FILE", config_file)
        clear_config_cache()

        config = load_app_config()

        assert config.default_provider == "lmstudio"
        assert config.queue.max_concurrent == 7
        assert config.queue.backoff_seconds == 2.0
        assert config.cache.ttl_for("user") == 60
        assert config.cache.ttl_for("unknown") == config.cache.default_ttl

    def test_config_is_cached(self):
        """Repeated loads return the same object until cleared."""
        first = load_app_config()
        assert load_app_config() is first
        clear_config_cache()
        assert load_app_config() is not first


class TestProviderConfig:
    """Tests for provider lookup and API keys."""

    def test_known_provider(self):
        config = get_provider_config("openai")
        assert isinstance(config, ProviderConfig)
        assert config.default_model == "gpt-4o"

    def test_unknown_provider_is_none(self):
        assert get_provider_config("nonexistent") is None

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        assert get_provider_config("anthropic").get_api_key() == "sk-test"

    def test_provider_without_key_env(self):
        assert get_provider_config("lmstudio").get_api_key() is None

    def test_jwt_secret_from_environment(self):
        """The autouse fixture sets SPIQ_JWT_SECRET."""
        assert load_app_config().auth.get_secret_key() == "test-jwt-secret"

    def test_missing_jwt_secret_raises(self, monkeypatch):
        monkeypatch.delenv("SPIQ_JWT_SECRET")
        with pytest.raises(ConfigError, match="SPIQ_JWT_SECRET"):
            load_app_config().auth.get_secret_key()

    def test_seed_secret_falls_back_to_jwt_secret(self, monkeypatch):
        monkeypatch.delenv("SPIQ_SEED_SECRET")
        assert load_app_config().auth.get_seed_secret() == "test-jwt-secret"

    def test_seed_secret_none_when_nothing_set(self, monkeypatch):
        """Without any secret the seed endpoint has nothing to match."""
        monkeypatch.delenv("SPIQ_SEED_SECRET")
        monkeypatch.delenv("SPIQ_JWT_SECRET")
        assert load_app_config().auth.get_seed_secret() is None


class TestTokenConsumption:
    """Tests for the static catalog."""

    def test_consumption_by_complexity(self):
        assert TOKEN_CONSUMPTION == {"simple": 1, "standard": 3, "complex": 7, "custom": 15}

    def test_all_packages_present(self):
        assert set(TOKEN_PACKAGES) == {
            "addon_small",
            "addon_medium",
            "small",
            "medium",
            "large",
            "bulk",
        }

    def test_package_price(self):
        assert calculate_token_price("bulk") == 15.00
        assert get_package("medium").tokens == 100

    def test_unknown_package_raises(self):
        with pytest.raises(PricingError, match="Invalid package key"):
            calculate_token_price("gigantic")


class TestSubscriptionTiers:
    """Tests for tier lookup."""

    def test_tier_ids(self):
        assert list(SUBSCRIPTION_TIERS) == [
            "free",
            "starter",
            "academy_plus",
            "pro",
            "team_pro",
            "enterprise",
        ]

    def test_unknown_tier_falls_back_to_free(self):
        assert get_tier("platinum").id == "free"
        assert get_tier(None).id == "free"

    def test_enterprise_is_unlimited(self):
        enterprise = get_tier("enterprise")
        assert enterprise.prompts_per_hour == UNLIMITED
        assert enterprise.prompts_per_day == UNLIMITED

    def test_paid_flag(self):
        assert not get_tier("free").is_paid
        assert get_tier("starter").is_paid

    def test_to_dict_lists_features(self):
        data = get_tier("pro").to_dict()
        assert data["id"] == "pro"
        assert isinstance(data["features"], list)


class TestOptimalTokenCost:
    """Tests for calculate_optimal_token_cost."""

    def test_bulk_first(self):
        """Cheapest per-token packages are bought first."""
        result = calculate_optimal_token_cost(1500)

        assert [line["package"] for line in result["breakdown"]] == ["bulk", "large"]
        assert result["total_cost_in_cents"] == 14999 + 7999
        assert result["tokens_received"] == 1500

    def test_exact_medium(self):
        result = calculate_optimal_token_cost(100)
        assert result["breakdown"] == [
            {"package": "medium", "quantity": 1, "tokens": 100, "cost": 1799}
        ]

    def test_remainder_topped_up_with_small(self):
        """Leftover tokens below the smallest package buy one small package."""
        result = calculate_optimal_token_cost(10)

        assert result["breakdown"] == [
            {"package": "small", "quantity": 1, "tokens": 25, "cost": 499}
        ]
        assert result["tokens_received"] == 25

    @pytest.mark.parametrize("tokens_needed", [20, 24])
    def test_one_small_package_beats_addon_plus_small(self, tokens_needed):
        """A single 25-token package is cheaper than 20 + 25."""
        result = calculate_optimal_token_cost(tokens_needed)

        assert result["breakdown"] == [
            {"package": "small", "quantity": 1, "tokens": 25, "cost": 499}
        ]
        assert result["total_cost_in_cents"] == 499

    def test_two_small_packages_beat_addon_medium(self):
        result = calculate_optimal_token_cost(45)

        assert result["breakdown"] == [
            {"package": "small", "quantity": 2, "tokens": 50, "cost": 998}
        ]
        assert result["tokens_received"] == 50

    def test_never_worse_than_any_single_package_repeated(self):
        """The result is at most the cost of covering the need with one package type."""
        for tokens_needed in (1, 37, 99, 260, 1234):
            total = calculate_optimal_token_cost(tokens_needed)["total_cost_in_cents"]
            for pkg in TOKEN_PACKAGES.values():
                copies = -(-tokens_needed // pkg.tokens)
                assert total <= copies * pkg.price_in_cents

    def test_zero_tokens(self):
        result = calculate_optimal_token_cost(0)
        assert result["total_cost_in_cents"] == 0
        assert result["breakdown"] == []

    def test_negative_raises(self):
        with pytest.raises(PricingError):
            calculate_optimal_token_cost(-1)

    def test_above_maximum_raises(self):
        with pytest.raises(PricingError):
            calculate_optimal_token_cost(MAX_TOKEN_PURCHASE + 1)
