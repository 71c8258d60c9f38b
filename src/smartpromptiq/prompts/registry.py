"""Prompt Registry - load prompt templates from Markdown files.

Templates live in the templates/ directory inside this package and use
{variable} placeholders.

Usage:
    from smartpromptiq.prompts.registry import get_prompt

    system = get_prompt("categories/business")
    refine = get_prompt("refine", category="business", current_prompt=text)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

PROMPTS_DIR = Path(__file__).parent / "templates"


def _load_prompt(key: str) -> str:
    """Read a template by key, e.g. "categories/business".

    Raises:
        FileNotFoundError: If the template doesn't exist
    """
    file_path = PROMPTS_DIR / f"{key}.md"
    if not file_path.exists():
        raise FileNotFoundError(f"Prompt not found: {key} (looked at {file_path})")
    return file_path.read_text(encoding="utf-8").strip()


@lru_cache(maxsize=64)
def _load_prompt_cached(key: str) -> str:
    return _load_prompt(key)


def get_prompt(key: str, use_cache: bool = True, **variables: object) -> str:
    """Load a template and substitute {name} placeholders.

    Unknown placeholders are left as they are.
    """
    content = _load_prompt_cached(key) if use_cache else _load_prompt(key)
    for name, value in variables.items():
        content = content.replace(f"{{{name}}}", str(value))
    return content


def list_prompts() -> list[str]:
    """Sorted template keys."""
    if not PROMPTS_DIR.exists():
        logger.warning("prompts_dir_not_found", path=str(PROMPTS_DIR))
        return []
    return sorted(
        path.relative_to(PROMPTS_DIR).with_suffix("").as_posix()
        for path in PROMPTS_DIR.rglob("*.md")
    )


def clear_cache() -> None:
    _load_prompt_cached.cache_clear()
