"""Deterministic A/B test bucketing.

Users are assigned to variants by hashing "{user_id}:{test_id}" with a
31-multiplier rolling hash (32-bit wrapped, like the web client) and
mapping the result mod 100 against cumulative variant allocations.

The same (user, test) pair always lands in the same variant. Assignments
are cached in the "user" LRU cache so repeated lookups skip the hashing.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog

from smartpromptiq.core.cache import LRUCache, get_cache
from smartpromptiq.db import ab_events_repository

logger = structlog.get_logger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class ABVariant:
    """A test variant. allocation is a percentage of test traffic."""

    id: str
    name: str
    allocation: int
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "allocation": self.allocation,
            "config": dict(self.config),
        }


@dataclass
class ABTest:
    """An A/B test definition.

    traffic_allocation is the percentage of all users included in the test.
    """

    id: str
    name: str
    description: str
    variants: list[ABVariant]
    traffic_allocation: int
    start_date: date
    is_active: bool = True
    end_date: date | None = None
    target_metrics: list[str] = field(default_factory=list)


@dataclass
class ABTestEvent:
    """A tracked event attributed to a variant."""

    user_id: str
    test_id: str
    variant_id: str
    event_type: str
    event_data: dict[str, Any] | None
    timestamp: str


# =============================================================================
# DEFAULT TESTS
# =============================================================================


def default_tests() -> list[ABTest]:
    """The tests running in production."""
    return [
        ABTest(
            id="onboarding_flow_v1",
            name="Onboarding Flow Optimization",
            description="Test different onboarding flows to improve user activation",
            variants=[
                ABVariant(
                    "control",
                    "Original Flow",
                    50,
                    {
                        "showWelcomeModal": False,
                        "skipCategorySelection": False,
                        "enableGuidedTour": False,
                    },
                ),
                ABVariant(
                    "guided",
                    "Guided Experience",
                    50,
                    {
                        "showWelcomeModal": True,
                        "skipCategorySelection": False,
                        "enableGuidedTour": True,
                    },
                ),
            ],
            traffic_allocation=100,
            start_date=date(2024, 1, 1),
            target_metrics=["user_activation", "first_prompt_creation", "subscription_conversion"],
        ),
        ABTest(
            id="pricing_display_v1",
            name="Pricing Display Test",
            description="Test different pricing presentations to improve conversion",
            variants=[
                ABVariant(
                    "control",
                    "Standard Pricing",
                    34,
                    {
                        "highlightRecommended": False,
                        "showAnnualDiscount": False,
                        "emphasizeTokenValue": False,
                    },
                ),
                ABVariant(
                    "recommended",
                    "Highlight Recommended",
                    33,
                    {
                        "highlightRecommended": True,
                        "showAnnualDiscount": False,
                        "emphasizeTokenValue": False,
                    },
                ),
                ABVariant(
                    "value_focused",
                    "Value-Focused",
                    33,
                    {
                        "highlightRecommended": True,
                        "showAnnualDiscount": True,
                        "emphasizeTokenValue": True,
                    },
                ),
            ],
            traffic_allocation=80,
            start_date=date(2024, 1, 15),
            target_metrics=["subscription_conversion", "upgrade_clicks", "time_on_pricing_page"],
        ),
        ABTest(
            id="prompt_generation_ui_v1",
            name="Prompt Generation UI",
            description="Test different UI layouts for prompt generation",
            variants=[
                ABVariant(
                    "control",
                    "Vertical Layout",
                    50,
                    {"layout": "vertical", "showProgressBar": False, "enableInlineHelp": False},
                ),
                ABVariant(
                    "horizontal",
                    "Horizontal Layout",
                    50,
                    {"layout": "horizontal", "showProgressBar": True, "enableInlineHelp": True},
                ),
            ],
            traffic_allocation=70,
            start_date=date(2024, 2, 1),
            target_metrics=["prompt_completion_rate", "user_satisfaction", "generation_time"],
        ),
    ]


DEFAULT_ONBOARDING_CONFIG = {
    "showWelcomeModal": False,
    "skipCategorySelection": False,
    "enableGuidedTour": False,
}
DEFAULT_PRICING_CONFIG = {
    "highlightRecommended": False,
    "showAnnualDiscount": False,
    "emphasizeTokenValue": False,
}
DEFAULT_PROMPT_UI_CONFIG = {
    "layout": "vertical",
    "showProgressBar": False,
    "enableInlineHelp": False,
}


# =============================================================================
# HASHING
# =============================================================================


def _to_int32(value: int) -> int:
    """Wrap an integer to signed 32 bits."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def hash_user_id(user_id: str, test_id: str) -> int:
    """Stable non-negative hash of "{user_id}:{test_id}".

    Iterates UTF-16 code units with h = h * 31 + c, wrapped to 32 bits,
    so the result matches the web client's bucketing.
    """
    text = f"{user_id}:{test_id}"
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((_to_int32(h << 5) - h) + code_unit)
    return abs(h)


# =============================================================================
# SERVICE
# =============================================================================


class ABTestingService:
    """Assigns users to variants and aggregates tracked events.

    Events are stored in the ab_test_events table, so results survive
    restarts and are visible to other processes such as the CLI.
    """

    def __init__(
        self,
        tests: list[ABTest] | None = None,
        cache: LRUCache | None = None,
    ):
        self._tests = {t.id: t for t in (tests if tests is not None else default_tests())}
        self._cache = cache if cache is not None else get_cache("user")

    def list_tests(self, active_only: bool = True) -> list[ABTest]:
        return [t for t in self._tests.values() if t.is_active or not active_only]

    def get_test(self, test_id: str) -> ABTest | None:
        return self._tests.get(test_id)

    @staticmethod
    def _cache_key(user_id: str, test_id: str) -> str:
        return f"ab_test:{user_id}:{test_id}"

    def assign_user_to_test(self, user_id: str, test_id: str) -> ABVariant | None:
        """Assign a user to a variant of an active test.

        Returns:
            The variant, or None if the test is unknown/inactive or the
            user falls outside the test's traffic allocation.
        """
        test = self._tests.get(test_id)
        if test is None or not test.is_active:
            return None

        cache_key = self._cache_key(user_id, test_id)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        user_percentile = hash_user_id(user_id, test_id) % 100 + 1
        if user_percentile > test.traffic_allocation:
            return None

        variant_percentile = hash_user_id(user_id, f"{test_id}_variant") % 100 + 1
        chosen = test.variants[0]
        cumulative = 0
        for variant in test.variants:
            cumulative += variant.allocation
            if variant_percentile <= cumulative:
                chosen = variant
                break

        self._cache.set(cache_key, chosen)
        logger.debug(
            "ab_test_assigned",
            user_id=user_id,
            test_id=test_id,
            variant_id=chosen.id,
            percentile=variant_percentile,
        )
        return chosen

    def get_user_test_assignments(self, user_id: str) -> dict[str, ABVariant]:
        """Variants for every active test the user participates in."""
        assignments = {}
        for test in self.list_tests():
            variant = self.assign_user_to_test(user_id, test.id)
            if variant is not None:
                assignments[test.id] = variant
        return assignments

    def track_event(
        self,
        user_id: str,
        test_id: str,
        event_type: str,
        event_data: dict[str, Any] | None = None,
    ) -> ABTestEvent | None:
        """Record an event for the user's variant.

        Returns:
            The recorded event, or None if the user is not in the test
        """
        variant = self.assign_user_to_test(user_id, test_id)
        if variant is None:
            return None

        event = ABTestEvent(
            user_id=user_id,
            test_id=test_id,
            variant_id=variant.id,
            event_type=event_type,
            event_data=event_data,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        ab_events_repository.insert_event(
            user_id=event.user_id,
            test_id=event.test_id,
            variant_id=event.variant_id,
            event_type=event.event_type,
            event_data=event.event_data,
            created_at=event.timestamp,
        )
        logger.info(
            "ab_test_event",
            test_id=test_id,
            variant_id=variant.id,
            event_type=event_type,
        )
        return event

    def get_test_results(self, test_id: str) -> dict[str, Any] | None:
        """Per-variant unique users, event counts and event-type metrics."""
        test = self._tests.get(test_id)
        if test is None:
            return None

        test_events = ab_events_repository.list_events(test_id)
        variants: dict[str, Any] = {}
        for variant in test.variants:
            variant_events = [e for e in test_events if e.variant_id == variant.id]
            variants[variant.id] = {
                "name": variant.name,
                "users": len({e.user_id for e in variant_events}),
                "events": len(variant_events),
                "metrics": dict(Counter(e.event_type for e in variant_events)),
            }

        return {
            "test_id": test_id,
            "test_name": test.name,
            "variants": variants,
            "total_events": len(test_events),
            "total_users": len({e.user_id for e in test_events}),
        }

    def get_ab_test_config(self, user_id: str) -> dict[str, dict[str, Any]]:
        """Variant configs keyed by test id, for client feature flags."""
        return {
            test_id: dict(variant.config)
            for test_id, variant in self.get_user_test_assignments(user_id).items()
        }

    def _config_or_default(
        self, user_id: str, test_id: str, default: dict[str, Any]
    ) -> dict[str, Any]:
        variant = self.assign_user_to_test(user_id, test_id)
        return dict(variant.config) if variant is not None else dict(default)

    def get_onboarding_config(self, user_id: str) -> dict[str, Any]:
        return self._config_or_default(user_id, "onboarding_flow_v1", DEFAULT_ONBOARDING_CONFIG)

    def get_pricing_config(self, user_id: str) -> dict[str, Any]:
        return self._config_or_default(user_id, "pricing_display_v1", DEFAULT_PRICING_CONFIG)

    def get_prompt_ui_config(self, user_id: str) -> dict[str, Any]:
        return self._config_or_default(
            user_id, "prompt_generation_ui_v1", DEFAULT_PROMPT_UI_CONFIG
        )


# Global service instance
_ab_service: ABTestingService | None = None


def get_ab_service() -> ABTestingService:
    """Get the global A/B testing service."""
    global _ab_service
    if _ab_service is None:
        _ab_service = ABTestingService()
    return _ab_service


def reset_ab_service() -> None:
    """Reset the A/B testing service (for testing)."""
    global _ab_service
    _ab_service = None
