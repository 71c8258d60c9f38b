"""LLM client over the OpenAI SDK.

Every supported provider speaks the OpenAI chat completions API, so a single
``openai.OpenAI`` client covers all of them. Endpoints, default models and
API key variables come from the ``providers`` section of the app config.

Supported providers:
- anthropic: Anthropic API (OpenAI-compatible endpoint)
- openai: OpenAI API
- lmstudio: Local LM Studio server
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import openai
import structlog
from openai import OpenAI

from smartpromptiq.config.app_config import get_provider_config, load_app_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["anthropic", "openai", "lmstudio"]

# Only OpenAI honours response_format={"type": "json_object"}
JSON_OBJECT_PROVIDERS = frozenset({"openai"})

JSON_REPAIR_PROMPT = """Fix the following text and return ONLY valid JSON:
<<<
{invalid_output}
>>>

Reply with the corrected JSON only, no explanations and no markdown."""

_REASONING_BLOCK = re.compile(
    r"<(think|analysis|reasoning)>.*?</\1>", re.DOTALL | re.IGNORECASE
)
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


# =============================================================================
# ERRORS
# =============================================================================


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """The provider could not be reached or timed out."""

    pass


class LLMRateLimitError(LLMError):
    """The provider rejected the call with HTTP 429."""

    pass


class LLMResponseError(LLMError):
    """The provider answered with something unusable."""

    pass


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Connection and sampling settings for one provider."""

    provider: Provider = "anthropic"
    base_url: str | None = None
    model: str = "default"
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: int = 60
    api_key: str | None = None

    @classmethod
    def from_app_config(cls, provider: str | None = None) -> LLMConfig:
        """Build config for a provider (the default provider when None).

        Raises:
            LLMError: If the provider is not configured
        """
        provider = provider or load_app_config().default_provider
        provider_config = get_provider_config(provider)
        if provider_config is None:
            raise LLMError(f"Unknown LLM provider: {provider}")

        return cls(
            provider=provider,  # type: ignore[arg-type]
            base_url=provider_config.base_url,
            model=provider_config.default_model,
            api_key=provider_config.get_api_key(),
        )


@dataclass
class Message:
    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """A completed chat call."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0
    finish_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)

    @property
    def truncated(self) -> bool:
        """Whether the provider stopped at max_tokens."""
        return self.finish_reason == "length"


# =============================================================================
# JSON EXTRACTION
# =============================================================================


def _json_candidates(text: str) -> list[str]:
    """Substrings worth trying as JSON, most specific first."""
    candidates = [text]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])
    return candidates


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Extract a JSON object from model output.

    Reasoning blocks such as ``<think>...</think>`` are dropped first. The
    whole text is tried, then a fenced code block, then the outermost braces.

    Returns:
        The parsed object, or None if nothing parses to a dict
    """
    cleaned = _REASONING_BLOCK.sub("", text).strip()
    for candidate in _json_candidates(cleaned):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Chat client for one configured provider."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider: str | None = None,
        model: str | None = None,
    ):
        """Initialize LLM client.

        Args:
            config: Explicit configuration (built from app config if None)
            provider: Provider name used when config is None
            model: Override the provider's default model
        """
        if config is None:
            config = LLMConfig.from_app_config(provider)
        if model is not None:
            config.model = model

        self.config = config
        # LM Studio accepts any key, but the SDK refuses to start without one
        self._client = OpenAI(
            base_url=config.base_url,
            api_key=config.api_key or "not-needed",
            timeout=config.timeout,
        )

        logger.debug(
            "llm_client_initialized",
            provider=config.provider,
            model=config.model,
            base_url=config.base_url,
        )

    def _create_completion(self, request: dict[str, Any]) -> Any:
        """Call the SDK, translating its exceptions into LLMError subclasses."""
        try:
            return self._client.chat.completions.create(**request)
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise LLMConnectionError(
                f"Could not connect to {self.config.provider} at {self.config.base_url}: {e}"
            ) from e
        except openai.RateLimitError as e:
            raise LLMRateLimitError(f"{self.config.provider} rate limit: {e}") from e
        except openai.APIError as e:
            raise LLMError(f"LLM call failed: {e}") from e

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat completion request.

        Raises:
            LLMConnectionError: If the provider can't be reached
            LLMRateLimitError: If the provider is throttling us
            LLMResponseError: If the response has no choices
            LLMError: For any other provider failure
        """
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
        }
        if json_mode and self.config.provider in JSON_OBJECT_PROVIDERS:
            request["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        completion = self._create_completion(request)
        latency_ms = int((time.perf_counter() - started) * 1000)

        if not completion.choices:
            raise LLMResponseError("Empty response from LLM")
        choice = completion.choices[0]

        usage: dict[str, int] = {}
        if completion.usage:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens,
            }

        response = LLMResponse(
            content=choice.message.content or "",
            model=completion.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
            finish_reason=choice.finish_reason,
        )

        if response.truncated:
            logger.warning(
                "llm_response_truncated",
                provider=self.config.provider,
                max_tokens=request["max_tokens"],
            )
        logger.debug(
            "llm_response",
            provider=self.config.provider,
            model=response.model,
            tokens=response.total_tokens,
            latency_ms=latency_ms,
        )
        return response

    def chat_json(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int = 1,
    ) -> dict[str, Any]:
        """Chat expecting a JSON object.

        When the answer doesn't parse, the model is shown its own output and
        asked to fix it, up to max_retries times.

        Raises:
            LLMResponseError: If no valid JSON was obtained
        """
        response = self.chat(messages, temperature, max_tokens, json_mode=True)
        parsed = parse_json_object(response.content)

        attempt = 0
        while parsed is None and attempt < max_retries:
            attempt += 1
            logger.warning(
                "llm_json_repair",
                attempt=attempt,
                provider=self.config.provider,
                content=response.content[:100],
            )
            repair = Message(
                role="user",
                content=JSON_REPAIR_PROMPT.format(invalid_output=response.content[:1000]),
            )
            response = self.chat(messages + [repair], temperature, max_tokens, json_mode=True)
            parsed = parse_json_object(response.content)

        if parsed is None:
            raise LLMResponseError(f"Could not obtain valid JSON: {response.content[:200]}...")
        return parsed

    def simple_chat(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Single-turn chat. Returns the response text."""
        messages = [
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_message),
        ]
        return self.chat(messages, temperature, max_tokens).content

    def is_available(self) -> bool:
        """Whether the provider answers a model listing."""
        try:
            self._client.models.list()
        except openai.APIError:
            return False
        return True
