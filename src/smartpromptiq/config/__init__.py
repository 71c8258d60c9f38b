"""Configuration package for SmartPromptIQ."""

from smartpromptiq.config.app_config import (
    AppConfig,
    AuthConfig,
    BillingConfig,
    CacheConfig,
    ProviderConfig,
    QueueConfig,
    get_provider_config,
    load_app_config,
)
from smartpromptiq.config.pricing import (
    SUBSCRIPTION_TIERS,
    TOKEN_CONSUMPTION,
    TOKEN_PACKAGES,
    PricingError,
    SubscriptionTier,
    TokenPackage,
    calculate_optimal_token_cost,
    get_package,
    get_tier,
)

__all__ = [
    "AppConfig",
    "AuthConfig",
    "BillingConfig",
    "CacheConfig",
    "ProviderConfig",
    "QueueConfig",
    "get_provider_config",
    "load_app_config",
    "SUBSCRIPTION_TIERS",
    "TOKEN_CONSUMPTION",
    "TOKEN_PACKAGES",
    "PricingError",
    "SubscriptionTier",
    "TokenPackage",
    "calculate_optimal_token_cost",
    "get_package",
    "get_tier",
]
