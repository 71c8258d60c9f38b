"""Pricing catalog: token consumption, token packages and subscription tiers.

All monetary values are in cents to avoid floating point errors.
A limit of -1 means unlimited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Tokens consumed per generation, by prompt complexity
TOKEN_CONSUMPTION: dict[str, int] = {
    "simple": 1,
    "standard": 3,
    "complex": 7,
    "custom": 15,
}

UNLIMITED = -1
LOW_BALANCE_THRESHOLD = 5
# Largest amount calculate_optimal_token_cost will price
MAX_TOKEN_PURCHASE = 100_000


class PricingError(Exception):
    """Invalid pricing lookup."""

    pass


@dataclass(frozen=True)
class TokenPackage:
    """A pay-per-use token package."""

    key: str
    tokens: int
    price_in_cents: int
    price_per_token: float
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "tokens": self.tokens,
            "price_in_cents": self.price_in_cents,
            "price_per_token": self.price_per_token,
            "label": self.label,
        }


@dataclass(frozen=True)
class SubscriptionTier:
    """A subscription tier."""

    id: str
    name: str
    price_in_cents: int
    yearly_price_in_cents: int
    tokens_per_month: int
    max_token_rollover: int
    team_members: int
    api_access: bool
    prompts_per_hour: int
    prompts_per_day: int
    support: str
    features: tuple[str, ...] = field(default_factory=tuple)
    badge: str | None = None
    popular: bool = False

    @property
    def is_paid(self) -> bool:
        return self.price_in_cents > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price_in_cents": self.price_in_cents,
            "yearly_price_in_cents": self.yearly_price_in_cents,
            "tokens_per_month": self.tokens_per_month,
            "max_token_rollover": self.max_token_rollover,
            "team_members": self.team_members,
            "api_access": self.api_access,
            "rate_limits": {
                "prompts_per_hour": self.prompts_per_hour,
                "prompts_per_day": self.prompts_per_day,
            },
            "support": self.support,
            "features": list(self.features),
            "badge": self.badge,
            "popular": self.popular,
        }


TOKEN_PACKAGES: dict[str, TokenPackage] = {
    "addon_small": TokenPackage("addon_small", 20, 500, 25.00, "20 Extra Tokens"),
    "addon_medium": TokenPackage("addon_medium", 50, 1000, 20.00, "50 Extra Tokens"),
    "small": TokenPackage("small", 25, 499, 19.96, "25 Tokens"),
    "medium": TokenPackage("medium", 100, 1799, 17.99, "100 Tokens"),
    "large": TokenPackage("large", 500, 7999, 16.00, "500 Tokens"),
    "bulk": TokenPackage("bulk", 1000, 14999, 15.00, "1,000 Tokens"),
}

SUBSCRIPTION_TIERS: dict[str, SubscriptionTier] = {
    "free": SubscriptionTier(
        id="free",
        name="Free",
        price_in_cents=0,
        yearly_price_in_cents=0,
        tokens_per_month=5,
        max_token_rollover=0,
        team_members=1,
        api_access=False,
        prompts_per_hour=2,
        prompts_per_day=5,
        support="Community support",
        features=(
            "5 AI prompts/month",
            "3 free Academy courses",
            "Community support",
        ),
    ),
    "starter": SubscriptionTier(
        id="starter",
        name="Starter",
        price_in_cents=1900,
        yearly_price_in_cents=15600,
        tokens_per_month=50,
        max_token_rollover=10,
        team_members=1,
        api_access=False,
        prompts_per_hour=10,
        prompts_per_day=50,
        support="Email support",
        features=(
            "50 AI prompts/month",
            "3 BuilderIQ blueprints",
            "HD video export",
            "Email support",
        ),
        badge="Best Value",
    ),
    "academy_plus": SubscriptionTier(
        id="academy_plus",
        name="Academy+",
        price_in_cents=2900,
        yearly_price_in_cents=24000,
        tokens_per_month=100,
        max_token_rollover=25,
        team_members=1,
        api_access=False,
        prompts_per_hour=20,
        prompts_per_day=100,
        support="Email support",
        features=(
            "All Academy courses",
            "Lessons with certificates",
            "100 AI prompts/month",
            "Audio learning & quizzes",
        ),
        badge="For Learners",
    ),
    "pro": SubscriptionTier(
        id="pro",
        name="Pro",
        price_in_cents=4900,
        yearly_price_in_cents=40800,
        tokens_per_month=200,
        max_token_rollover=50,
        team_members=1,
        api_access=True,
        prompts_per_hour=50,
        prompts_per_day=200,
        support="Priority support",
        features=(
            "200 AI prompts/month",
            "All Academy courses",
            "Commercial license",
            "Priority support",
        ),
        badge="Most Popular",
        popular=True,
    ),
    "team_pro": SubscriptionTier(
        id="team_pro",
        name="Team Pro",
        price_in_cents=9900,
        yearly_price_in_cents=82800,
        tokens_per_month=1000,
        max_token_rollover=200,
        team_members=5,
        api_access=True,
        prompts_per_hour=100,
        prompts_per_day=500,
        support="Priority chat support",
        features=(
            "1,000 AI prompts/month",
            "2-5 team members",
            "Team workspace",
            "1,000 API calls/month",
        ),
        badge="Best for Teams",
    ),
    "enterprise": SubscriptionTier(
        id="enterprise",
        name="Enterprise",
        price_in_cents=29900,
        yearly_price_in_cents=299900,
        tokens_per_month=5000,
        max_token_rollover=1000,
        team_members=UNLIMITED,
        api_access=True,
        prompts_per_hour=UNLIMITED,
        prompts_per_day=UNLIMITED,
        support="Dedicated account manager",
        features=(
            "5,000+ AI prompts/month",
            "Unlimited team members",
            "SSO & advanced security",
        ),
        badge="Contact Sales",
    ),
}

# Tiers that unlock pro-only Academy courses
PRO_TIERS = frozenset({"pro", "team_pro", "enterprise"})


def get_tier(tier_id: str | None) -> SubscriptionTier:
    """Get a subscription tier, falling back to free."""
    return SUBSCRIPTION_TIERS.get(tier_id or "free", SUBSCRIPTION_TIERS["free"])


def get_package(package_key: str) -> TokenPackage:
    """Get a token package by key.

    Raises:
        PricingError: If the key is unknown
    """
    pkg = TOKEN_PACKAGES.get(package_key)
    if pkg is None:
        raise PricingError(f"Invalid package key: {package_key}")
    return pkg


def calculate_token_price(package_key: str) -> float:
    """Effective price per token (cents) for a package."""
    return get_package(package_key).price_per_token


def calculate_optimal_token_cost(tokens_needed: int) -> dict[str, Any]:
    """Cheapest package combination covering at least tokens_needed.

    best[t] is the lowest cost that covers t tokens. Buying a package of n
    tokens on top of best[max(0, t - n)] may overshoot, which is how a
    single 25-token package beats 20 + 25 for a 24-token need. Ties go to
    the package with the lower price per token.

    Args:
        tokens_needed: Number of tokens to buy (0..MAX_TOKEN_PURCHASE)

    Returns:
        Dict with total_cost_in_cents, breakdown and tokens_received

    Raises:
        PricingError: If tokens_needed is out of range
    """
    if tokens_needed < 0:
        raise PricingError("tokens_needed must be >= 0")
    if tokens_needed > MAX_TOKEN_PURCHASE:
        raise PricingError(f"tokens_needed must be <= {MAX_TOKEN_PURCHASE}")

    packages = sorted(TOKEN_PACKAGES.values(), key=lambda p: p.price_per_token)

    best = [0] * (tokens_needed + 1)
    choice: list[TokenPackage | None] = [None] * (tokens_needed + 1)
    for t in range(1, tokens_needed + 1):
        best[t] = -1
        for pkg in packages:
            cost = pkg.price_in_cents + best[max(0, t - pkg.tokens)]
            if best[t] < 0 or cost < best[t]:
                best[t] = cost
                choice[t] = pkg

    counts: dict[str, int] = {}
    t = tokens_needed
    while t > 0:
        pkg = choice[t]
        counts[pkg.key] = counts.get(pkg.key, 0) + 1
        t = max(0, t - pkg.tokens)

    breakdown = [
        {
            "package": pkg.key,
            "quantity": counts[pkg.key],
            "tokens": counts[pkg.key] * pkg.tokens,
            "cost": counts[pkg.key] * pkg.price_in_cents,
        }
        for pkg in packages
        if pkg.key in counts
    ]

    return {
        "total_cost_in_cents": best[tokens_needed],
        "breakdown": breakdown,
        "tokens_received": sum(item["tokens"] for item in breakdown),
    }
