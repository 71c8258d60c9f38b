"""Core business logic.

Modules:
- cache: diskcache-backed LRU caches
- ab_testing: deterministic variant assignment
- request_queue: bounded async generation queue
- rate_limiter: tier-based prompt rate limits
- token_manager: token balance and consumption
- billing: token checkout sessions
- academy: courses, enrollments and progress
- prompt_generator: category prompt generation and refinement
- security: password hashing and access tokens
"""

__all__ = [
    "cache",
    "ab_testing",
    "request_queue",
    "rate_limiter",
    "token_manager",
    "billing",
    "academy",
    "prompt_generator",
    "security",
]
