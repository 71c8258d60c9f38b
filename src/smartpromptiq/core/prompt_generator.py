"""Category prompt generation and refinement.

Builds the user prompt from questionnaire responses, sends it to the LLM
with the category system prompt, and caches the generated content. Also
pulls bullet-point sections and financial figures out of generated text,
and serves a small library of ready-made prompt suggestions.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from smartpromptiq.config.app_config import load_app_config
from smartpromptiq.core.cache import get_cache, make_cache_key
from smartpromptiq.llm.client import LLMClient, LLMError, Message
from smartpromptiq.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# =============================================================================
# CATEGORY TEMPLATES
# =============================================================================

CATEGORY_STRUCTURES: dict[str, list[str]] = {
    "business": [
        "Executive Summary",
        "Strategic Objectives",
        "Market Analysis Framework",
        "Implementation Roadmap",
        "Key Performance Indicators",
    ],
    "creative": [
        "Creative Concept",
        "Visual Direction",
        "Brand Guidelines",
        "Execution Strategy",
        "Success Metrics",
    ],
    "technical": [
        "Technical Overview",
        "Architecture Requirements",
        "Implementation Plan",
        "Testing Strategy",
        "Deployment Guidelines",
    ],
    "marketing": [
        "Campaign Overview",
        "Target Audience",
        "Messaging Strategy",
        "Channel Plan",
        "Performance Metrics",
    ],
    "education": [
        "Learning Objectives",
        "Course Outline",
        "Teaching Activities",
        "Assessment Plan",
        "Resources",
    ],
    "personal": [
        "Current Situation",
        "Goals",
        "Action Plan",
        "Habits and Routines",
        "Progress Tracking",
    ],
}

GENERATE_MAX_TOKENS = 2000
REFINE_MAX_TOKENS = 2500

# Keywords a bullet line must contain to belong to a section type
SECTION_KEYWORDS: dict[str, list[str]] = {
    "funding": ["funding", "investment", "capital"],
    "strategy": ["strategy", "approach", "plan"],
    "risk": ["risk", "challenge", "threat"],
    "recommendation": ["recommend", "suggest", "should"],
    "pitch": ["pitch", "present", "investor"],
    "slide": ["slide", "section", "element"],
    "challenge": ["challenge", "difficulty", "obstacle"],
    "metric": ["metric", "kpi", "measure"],
}

FINANCIAL_KEYWORDS: dict[str, list[str]] = {
    "revenue": ["revenue", "sales", "income"],
    "expense": ["expense", "cost", "spending"],
    "profit": ["profit", "margin", "earnings"],
    "milestone": ["milestone", "target", "goal"],
    "use": ["use", "allocation", "spend"],
    "return": ["return", "roi", "yield"],
    "projection": ["project", "forecast", "estimate"],
    "investment": ["investment", "funding", "capital"],
}

FINANCIAL_MARKERS = ("$", "%", "month", "year")

BULLET_MARKERS = ("•", "-", "*")
_BULLET_PREFIX = re.compile(r"^[•\-*]\s*")


class PromptGenerationError(Exception):
    """Error while generating or refining a prompt."""

    pass


class UnknownCategoryError(PromptGenerationError):
    """Category has no template."""

    pass


@dataclass
class GeneratedPrompt:
    """Generated or refined prompt content."""

    content: str
    category: str
    model: str | None = None
    tokens: int = 0
    cached: bool = False
    sections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "category": self.category,
            "model": self.model,
            "tokens": self.tokens,
            "cached": self.cached,
            "sections": self.sections,
        }


def list_categories() -> list[str]:
    return list(CATEGORY_STRUCTURES)


def _require_category(category: str) -> list[str]:
    structure = CATEGORY_STRUCTURES.get(category)
    if structure is None:
        raise UnknownCategoryError(f"Unsupported category: {category}")
    return structure


def get_system_prompt(category: str) -> str:
    _require_category(category)
    return get_prompt(f"categories/{category}")


# =============================================================================
# PROMPT BUILDING
# =============================================================================


def build_user_prompt(
    category: str,
    responses: dict[str, Any],
    customization: dict[str, str] | None = None,
) -> str:
    """Format questionnaire responses into the generation request.

    Args:
        category: Category key
        responses: Questionnaire answers, rendered as "key: value" lines
        customization: Optional tone, detail_level and format

    Raises:
        UnknownCategoryError: If the category has no template
    """
    structure = _require_category(category)
    customization = customization or {}

    tone = customization.get("tone")
    detail = customization.get("detail_level")
    fmt = customization.get("format")

    return get_prompt(
        "generate",
        category=category,
        responses="\n".join(f"{key}: {value}" for key, value in responses.items()),
        tone_instruction=f"Use a {tone} tone." if tone else "Use a professional tone.",
        detail_instruction=(
            f"Provide {detail} level of detail." if detail else "Provide comprehensive detail."
        ),
        format_instruction=f"Format as {fmt}." if fmt else "Format as a structured document.",
        sections=", ".join(structure),
    )


def build_refine_prompt(
    current_prompt: str,
    query: str,
    answers: dict[str, Any] | None = None,
    history: list[dict[str, Any]] | None = None,
) -> str:
    """Format a refinement request around the current prompt."""
    history_block = ""
    if history:
        lines = [f"Q: {item.get('question', '')}\nA: Applied refinement" for item in history]
        history_block = "Previous refinements:\n" + "\n".join(lines) + "\n\n"

    return get_prompt(
        "refine",
        answers=json.dumps(answers or {}, indent=2),
        current_prompt=current_prompt,
        history=history_block,
        query=query,
    )


def _complete(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    client: LLMClient | None,
) -> tuple[str, str | None, int]:
    """Run one completion, trying the fallback provider when none is given.

    Returns:
        Tuple of (content, model, total_tokens)
    """
    messages = [
        Message(role="system", content=system_prompt),
        Message(role="user", content=user_prompt),
    ]

    if client is not None:
        clients = [client]
    else:
        config = load_app_config()
        providers = [config.default_provider]
        if "openai" in config.providers and config.default_provider != "openai":
            providers.append("openai")
        clients = [LLMClient(provider=name) for name in providers]

    last_error: LLMError | None = None
    for llm in clients:
        try:
            response = llm.chat(messages, max_tokens=max_tokens)
        except LLMError as e:
            logger.warning("llm_provider_failed", provider=llm.config.provider, error=str(e))
            last_error = e
            continue
        if response.content.strip():
            return response.content, response.model, response.total_tokens
        logger.warning("llm_empty_content", provider=llm.config.provider)

    raise PromptGenerationError(
        "AI services are currently unavailable. Please try again later."
    ) from last_error


# =============================================================================
# GENERATION
# =============================================================================


def generate_prompt(
    category: str,
    responses: dict[str, Any],
    customization: dict[str, str] | None = None,
    client: LLMClient | None = None,
    use_cache: bool = True,
) -> GeneratedPrompt:
    """Generate a category prompt from questionnaire responses.

    Identical requests are served from the "ai" cache.

    Raises:
        UnknownCategoryError: If the category has no template
        PromptGenerationError: If no provider produced content
    """
    user_prompt = build_user_prompt(category, responses, customization)
    cache = get_cache("ai")
    cache_key = make_cache_key(
        "prompt",
        {"category": category, "responses": responses, "customization": customization or {}},
    )

    if use_cache:
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("prompt_cache_hit", category=category)
            return GeneratedPrompt(
                content=cached["content"],
                category=category,
                model=cached.get("model"),
                cached=True,
                sections=CATEGORY_STRUCTURES[category],
            )

    content, model, tokens = _complete(
        get_system_prompt(category), user_prompt, GENERATE_MAX_TOKENS, client
    )
    cache.set(cache_key, {"content": content, "model": model})

    logger.info("prompt_generated", category=category, model=model, tokens=tokens)
    return GeneratedPrompt(
        content=content,
        category=category,
        model=model,
        tokens=tokens,
        sections=CATEGORY_STRUCTURES[category],
    )


def refine_prompt(
    current_prompt: str,
    query: str,
    category: str,
    answers: dict[str, Any] | None = None,
    history: list[dict[str, Any]] | None = None,
    client: LLMClient | None = None,
) -> GeneratedPrompt:
    """Apply a refinement request to an existing prompt.

    Raises:
        UnknownCategoryError: If the category has no template
        PromptGenerationError: If no provider produced content
    """
    system_prompt = get_system_prompt(category)
    user_prompt = build_refine_prompt(current_prompt, query, answers, history)

    content, model, tokens = _complete(system_prompt, user_prompt, REFINE_MAX_TOKENS, client)
    logger.info("prompt_refined", category=category, model=model, tokens=tokens)
    return GeneratedPrompt(content=content, category=category, model=model, tokens=tokens)


# =============================================================================
# EXTRACTION
# =============================================================================


def _extract_bullets(
    content: str,
    keywords: list[str],
    limit: int,
    markers: tuple[str, ...] | None = None,
) -> list[str]:
    results: list[str] = []
    for line in content.splitlines():
        if not any(m in line for m in BULLET_MARKERS):
            continue
        text = _BULLET_PREFIX.sub("", line.strip()).strip()
        if len(text) <= 10:
            continue
        lowered = text.lower()
        if not any(k in lowered for k in keywords):
            continue
        if markers is not None and not any(m in line.strip() for m in markers):
            continue
        results.append(text)
        if len(results) >= limit:
            break
    return results


def extract_sections(content: str, section_type: str, limit: int = 8) -> list[str]:
    """Bullet lines mentioning a section type's keywords.

    Unknown section types match nothing.
    """
    keywords = SECTION_KEYWORDS.get(section_type)
    if keywords is None:
        return []
    return _extract_bullets(content, keywords, limit)


def extract_financial_data(content: str, data_type: str, limit: int = 6) -> list[str]:
    """Bullet lines with a data type keyword and a money, percent or time figure.

    Figures are matched case-sensitively on the raw line, so "Year 1" alone
    does not count.
    """
    keywords = FINANCIAL_KEYWORDS.get(data_type)
    if keywords is None:
        return []
    return _extract_bullets(content, keywords, limit, markers=FINANCIAL_MARKERS)


# =============================================================================
# SUGGESTIONS
# =============================================================================

MAX_SUGGESTIONS = 8
BASE_RELEVANCE = 0.5

# Estimated output tokens by complexity level 1..5
ESTIMATED_TOKENS = {1: 150, 2: 300, 3: 500, 4: 750, 5: 1000}

SUGGESTION_LIBRARY: list[dict[str, Any]] = [
    {
        "id": "business_plan",
        "title": "Business Plan Outline",
        "description": "Structure a business plan with market analysis and financial projections",
        "category": "business",
        "tags": ["startup", "strategy", "funding"],
        "complexity": 4,
    },
    {
        "id": "competitor_analysis",
        "title": "Competitor Analysis",
        "description": "Compare competitors on pricing, positioning and strengths",
        "category": "business",
        "tags": ["market", "research", "strategy"],
        "complexity": 3,
    },
    {
        "id": "investor_pitch",
        "title": "Investor Pitch Deck",
        "description": "Draft the slides and talking points for an investor pitch",
        "category": "business",
        "tags": ["funding", "pitch", "investor"],
        "complexity": 4,
    },
    {
        "id": "brand_identity",
        "title": "Brand Identity Brief",
        "description": "Define the visual identity, voice and personality of a brand",
        "category": "creative",
        "tags": ["brand", "design", "logo"],
        "complexity": 3,
    },
    {
        "id": "video_script",
        "title": "Short Video Script",
        "description": "Write a script for a short promotional video",
        "category": "creative",
        "tags": ["video", "script", "storytelling"],
        "complexity": 2,
    },
    {
        "id": "api_design",
        "title": "REST API Design",
        "description": "Specify endpoints, payloads and error handling for a REST API",
        "category": "technical",
        "tags": ["api", "backend", "architecture"],
        "complexity": 4,
    },
    {
        "id": "code_review",
        "title": "Code Review Checklist",
        "description": "Review code for correctness, readability and security issues",
        "category": "technical",
        "tags": ["code", "review", "quality"],
        "complexity": 2,
    },
    {
        "id": "system_architecture",
        "title": "System Architecture Document",
        "description": "Describe components, data flow and deployment of a system",
        "category": "technical",
        "tags": ["architecture", "deployment", "scalability"],
        "complexity": 5,
    },
    {
        "id": "email_campaign",
        "title": "Email Campaign Sequence",
        "description": "Plan a sequence of marketing emails with subject lines and calls to action",
        "category": "marketing",
        "tags": ["email", "campaign", "conversion"],
        "complexity": 3,
    },
    {
        "id": "social_media_calendar",
        "title": "Social Media Content Calendar",
        "description": "Plan a month of social media posts across channels",
        "category": "marketing",
        "tags": ["social", "content", "calendar"],
        "complexity": 2,
    },
    {
        "id": "lesson_plan",
        "title": "Lesson Plan",
        "description": "Create a lesson plan with objectives, activities and assessment",
        "category": "education",
        "tags": ["teaching", "lesson", "assessment"],
        "complexity": 3,
    },
    {
        "id": "study_guide",
        "title": "Study Guide",
        "description": "Summarize a topic into a study guide with practice questions",
        "category": "education",
        "tags": ["study", "learning", "quiz"],
        "complexity": 2,
    },
    {
        "id": "goal_setting",
        "title": "Quarterly Goal Setting",
        "description": "Turn personal goals into measurable quarterly milestones",
        "category": "personal",
        "tags": ["goals", "productivity", "habits"],
        "complexity": 2,
    },
    {
        "id": "budget_plan",
        "title": "Personal Budget Plan",
        "description": "Build a monthly budget with savings targets",
        "category": "personal",
        "tags": ["finance", "budget", "savings"],
        "complexity": 2,
    },
]


def score_suggestion(
    suggestion: dict[str, Any],
    query: str = "",
    preferences: list[str] | None = None,
) -> float:
    """Relevance in [0, 1]: base score plus query keyword and preference matches."""
    score = BASE_RELEVANCE

    words = [w for w in query.lower().split() if w]
    if words:
        text = " ".join(
            [suggestion["title"], suggestion["description"], " ".join(suggestion["tags"])]
        ).lower()
        matches = sum(1 for word in words if word in text)
        score += matches / len(words) * 0.3

    if preferences:
        prefs = [p.lower() for p in preferences]
        if any(
            p in suggestion["category"] or any(p in tag.lower() for tag in suggestion["tags"])
            for p in prefs
        ):
            score += 0.2

    return round(min(1.0, score), 4)


def suggest_prompts(
    category: str | None = None,
    query: str = "",
    preferences: list[str] | None = None,
    limit: int = MAX_SUGGESTIONS,
) -> list[dict[str, Any]]:
    """Ready-made prompt ideas ranked by relevance.

    Args:
        category: Only suggestions from this category (all when None)
        query: Free text matched against title, description and tags
        preferences: Categories or tags the user prefers
        limit: Maximum number of suggestions

    Returns:
        Suggestions with relevance_score and estimated_tokens, best first
    """
    if category is not None:
        _require_category(category)

    cache = get_cache("suggestions")
    cache_key = make_cache_key(
        "suggestions",
        {"category": category, "query": query.strip().lower(), "preferences": preferences or []},
    )
    cached = cache.get(cache_key)
    if cached is not None:
        return cached[:limit]

    ranked = []
    for item in SUGGESTION_LIBRARY:
        if category is not None and item["category"] != category:
            continue
        ranked.append(
            {
                **item,
                "relevance_score": score_suggestion(item, query, preferences),
                "estimated_tokens": ESTIMATED_TOKENS.get(item["complexity"], 500),
            }
        )
    # Stable sort keeps library order for ties
    ranked.sort(key=lambda s: s["relevance_score"], reverse=True)
    ranked = ranked[:MAX_SUGGESTIONS]

    cache.set(cache_key, ranked)
    return ranked[:limit]
