"""Tier-based prompt rate limiting.

Hourly and daily prompt limits come from the user's subscription tier.
Anonymous callers get a small fixed allowance. Counting is done by the
limits library with a moving window over in-memory storage.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock

import structlog
from limits import RateLimitItem, RateLimitItemPerDay, RateLimitItemPerHour
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from smartpromptiq.config.pricing import UNLIMITED, get_tier

logger = structlog.get_logger(__name__)

ANONYMOUS_PER_HOUR = 1
ANONYMOUS_PER_DAY = 2


@dataclass
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    limit_type: str | None = None
    retry_after: int = 0
    message: str | None = None


class PromptRateLimiter:
    """Per-user hourly and daily prompt limits."""

    def __init__(self):
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)
        self._lock = Lock()

    @staticmethod
    def _limits_for(tier: str | None, anonymous: bool) -> list[tuple[str, RateLimitItem]]:
        if anonymous:
            return [
                ("hourly", RateLimitItemPerHour(ANONYMOUS_PER_HOUR)),
                ("daily", RateLimitItemPerDay(ANONYMOUS_PER_DAY)),
            ]

        plan = get_tier(tier)
        items = []
        if plan.prompts_per_hour != UNLIMITED:
            items.append(("hourly", RateLimitItemPerHour(plan.prompts_per_hour)))
        if plan.prompts_per_day != UNLIMITED:
            items.append(("daily", RateLimitItemPerDay(plan.prompts_per_day)))
        return items

    def _retry_after(self, item: RateLimitItem, key: str) -> int:
        stats = self._limiter.get_window_stats(item, key)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def check(self, user_id: str | None, tier: str | None = None) -> RateLimitDecision:
        """Check and count one prompt for a user.

        Nothing is counted when any limit is already exhausted.

        Args:
            user_id: User ID, or None for anonymous callers
            tier: Subscription tier id

        Returns:
            RateLimitDecision
        """
        anonymous = user_id is None
        key = "anonymous" if anonymous else f"user:{user_id}"
        items = self._limits_for(tier, anonymous)

        with self._lock:
            for limit_type, item in items:
                if not self._limiter.test(item, key):
                    retry_after = self._retry_after(item, key)
                    window = "hour" if limit_type == "hourly" else "day"
                    logger.warning(
                        "rate_limit_exceeded",
                        user_id=user_id,
                        tier=tier,
                        limit_type=limit_type,
                        retry_after=retry_after,
                    )
                    return RateLimitDecision(
                        allowed=False,
                        limit_type=limit_type,
                        retry_after=retry_after,
                        message=(
                            f"Prompt limit of {item.amount} per {window} reached. "
                            "Upgrade your plan for higher limits."
                        ),
                    )

            for _, item in items:
                self._limiter.hit(item, key)

        return RateLimitDecision(allowed=True)

    def remaining(self, user_id: str | None, tier: str | None = None) -> dict[str, int]:
        """Remaining prompts per window (-1 for unlimited)."""
        anonymous = user_id is None
        key = "anonymous" if anonymous else f"user:{user_id}"
        result = {"hourly": UNLIMITED, "daily": UNLIMITED}
        for limit_type, item in self._limits_for(tier, anonymous):
            result[limit_type] = self._limiter.get_window_stats(item, key).remaining
        return result

    def reset(self) -> None:
        self._storage.reset()


# Global limiter instance
_rate_limiter: PromptRateLimiter | None = None


def get_rate_limiter() -> PromptRateLimiter:
    """Get the global prompt rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = PromptRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (for testing)."""
    global _rate_limiter
    _rate_limiter = None
