"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is missing.

Usage:
    from smartpromptiq.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    provider = get_provider_config("anthropic")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")


class ConfigError(Exception):
    """Required configuration is missing."""

    pass


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class QueueConfig:
    """Generation request queue settings."""

    max_concurrent: int = 3
    max_retries: int = 3
    backoff_seconds: float = 2.0
    timeout_seconds: float = 30.0


@dataclass
class CacheConfig:
    """LRU cache settings shared by the named caches."""

    directory: str | None = None
    size_limit: int = 64 * 1024**2
    default_ttl: int = 3600
    ttls: dict[str, int] = field(default_factory=dict)

    def ttl_for(self, name: str) -> int:
        """TTL in seconds for a named cache."""
        return self.ttls.get(name, self.default_ttl)


@dataclass
class AuthConfig:
    """JWT settings."""

    secret_key_env: str = "SPIQ_JWT_SECRET"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 120
    seed_secret_env: str = "SPIQ_SEED_SECRET"

    def get_secret_key(self) -> str:
        """JWT signing key.

        Raises:
            ConfigError: If the env var is unset or empty
        """
        key = os.environ.get(self.secret_key_env)
        if not key:
            raise ConfigError(f"{self.secret_key_env} must be set to sign access tokens")
        return key

    def get_seed_secret(self) -> str | None:
        """Secret guarding the academy seed endpoint.

        Falls back to the JWT key. None when neither is set, which locks
        the endpoint.
        """
        return os.environ.get(self.seed_secret_env) or os.environ.get(self.secret_key_env) or None


@dataclass
class BillingConfig:
    """Checkout settings."""

    checkout_base_url: str = "https://smartpromptiq.com/checkout"
    token_expiry_days: int = 90


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    default_provider: str = "anthropic"
    queue: QueueConfig = field(default_factory=QueueConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    paths: dict[str, str] = field(default_factory=dict)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "anthropic": {
                "base_url": "https://api.anthropic.com/v1/",
                "default_model": "claude-sonnet-4-20250514",
                "api_key_env": "ANTHROPIC_API_KEY",
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o",
                "api_key_env": "OPENAI_API_KEY",
            },
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
        },
        "default_provider": "anthropic",
        "queue": {
            "max_concurrent": 3,
            "max_retries": 3,
            "backoff_seconds": 2.0,
            "timeout_seconds": 30.0,
        },
        "cache": {
            "directory": None,
            "size_limit": 64 * 1024**2,
            "default_ttl": 3600,
            "ttls": {
                "ai": 6 * 60 * 60,
                "user": 30 * 60,
                "suggestions": 12 * 60 * 60,
            },
        },
        "auth": {
            "secret_key_env": "SPIQ_JWT_SECRET",
            "algorithm": "HS256",
            "access_token_expire_minutes": 120,
            "seed_secret_env": "SPIQ_SEED_SECRET",
        },
        "billing": {
            "checkout_base_url": "https://smartpromptiq.com/checkout",
            "token_expiry_days": 90,
        },
        "paths": {
            "db_path": "db/smartpromptiq.db",
            "config_dir": "data/config",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in data.get("providers", defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    queue_data = {**defaults["queue"], **data.get("queue", {})}
    cache_data = {**defaults["cache"], **data.get("cache", {})}
    auth_data = {**defaults["auth"], **data.get("auth", {})}
    billing_data = {**defaults["billing"], **data.get("billing", {})}
    paths = {**defaults["paths"], **data.get("paths", {})}

    return AppConfig(
        providers=providers,
        default_provider=data.get("default_provider", defaults["default_provider"]),
        queue=QueueConfig(
            max_concurrent=int(queue_data["max_concurrent"]),
            max_retries=int(queue_data["max_retries"]),
            backoff_seconds=float(queue_data["backoff_seconds"]),
            timeout_seconds=float(queue_data["timeout_seconds"]),
        ),
        cache=CacheConfig(
            directory=cache_data.get("directory"),
            size_limit=int(cache_data["size_limit"]),
            default_ttl=int(cache_data["default_ttl"]),
            ttls={k: int(v) for k, v in (cache_data.get("ttls") or {}).items()},
        ),
        auth=AuthConfig(**auth_data),
        billing=BillingConfig(**billing_data),
        paths=paths,
    )


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    data: dict[str, Any]

    if CONFIG_FILE.exists():
        logger.debug("loading_app_config", source=str(CONFIG_FILE))
        data = yaml.safe_load(CONFIG_FILE.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "anthropic", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
