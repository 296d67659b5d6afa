"""
Gemini REST client with retry, timeout, and model fallback.

Every call runs as a two-tier chain:

1. The preferred model, up to max_retries attempts with exponential
   backoff (base * factor^(attempt-1), capped, plus a little jitter) on
   retryable failures: timeouts, 429, 5xx, network errors, and 2xx bodies
   missing the generated text.
2. If that chain ends on a retryable failure and fallback is enabled, one
   more full chain against the fallback model.

Non-retryable failures (other 4xx, safety blocks) raise immediately
without touching the retry budget or the fallback model. Callers only
ever see generated text or a ModelError.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Protocol

import httpx
from loguru import logger

from mcqgen.errors import ModelError, ModelErrorKind

if TYPE_CHECKING:
    from config import Settings


class GenerationProfile(str, Enum):
    """Per-operation sampling presets."""

    DRAFTING = "drafting"
    SCORING = "scoring"
    DEFAULT = "default"


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters sent as generationConfig."""

    temperature: float
    top_k: int
    top_p: float
    max_output_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }


GENERATION_PRESETS: dict[GenerationProfile, GenerationConfig] = {
    GenerationProfile.DRAFTING: GenerationConfig(0.7, 40, 0.9, 8192),
    GenerationProfile.SCORING: GenerationConfig(0.2, 15, 0.8, 4096),
    GenerationProfile.DEFAULT: GenerationConfig(0.5, 30, 0.9, 8192),
}

# Medical content trips the default filters; blocking is left to review
SAFETY_SETTINGS: list[dict[str, str]] = [
    {"category": category, "threshold": "BLOCK_NONE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


@dataclass
class CompletionOptions:
    """Per-call overrides for complete()."""

    preferred_model: str | None = None
    fallback_model: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    timeout_ms: int | None = None
    profile: GenerationProfile = GenerationProfile.DEFAULT
    response_format: Literal["text", "json"] = "text"
    operation: str = "completion"

    def generation_config(self) -> dict[str, Any]:
        config = GENERATION_PRESETS[self.profile].to_dict()
        if self.temperature is not None:
            config["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            config["maxOutputTokens"] = self.max_output_tokens
        if self.response_format == "json":
            config["responseMimeType"] = "application/json"
        return config


class ModelClient(Protocol):
    """Anything that turns a prompt into text or raises ModelError."""

    async def complete(self, prompt: str, options: CompletionOptions | None = None) -> str: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one model chain."""

    max_retries: int = 3
    base_delay_ms: int = 500
    backoff_factor: float = 2.0
    max_delay_ms: int = 8000
    jitter_ratio: float = 0.1

    def delay_ms(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based)."""
        delay = self.base_delay_ms * self.backoff_factor ** (attempt - 1)
        delay += random.uniform(0, delay * self.jitter_ratio)
        return min(delay, self.max_delay_ms)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.model_max_retries,
            base_delay_ms=settings.model_base_delay_ms,
            backoff_factor=settings.model_backoff_factor,
            max_delay_ms=settings.model_max_delay_ms,
            jitter_ratio=settings.model_jitter_ratio,
        )


class GeminiClient:
    """
    Async client for the Gemini generateContent endpoint.

    Usage:
        client = GeminiClient(api_key="...")
        text = await client.complete(prompt, CompletionOptions(profile=GenerationProfile.DRAFTING))
        await client.close()
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-2.5-pro",
        fallback_model: str | None = "gemini-2.5-flash",
        fallback_enabled: bool = True,
        retry_policy: RetryPolicy | None = None,
        timeout_ms: int = 120_000,
    ):
        """
        Initialize the Gemini client.

        Args:
            api_key: Gemini API key, sent as the x-goog-api-key header
            base_url: API root up to the version segment
            model: Default preferred model
            fallback_model: Model tried after the preferred chain fails
            fallback_enabled: Whether the fallback chain runs at all
            retry_policy: Attempts and backoff per chain
            timeout_ms: Default per-attempt timeout
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.fallback_model = fallback_model
        self.fallback_enabled = fallback_enabled
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_ms = timeout_ms

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-goog-api-key"] = api_key

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_ms / 1000),
            follow_redirects=True,
            headers=headers,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiClient:
        return cls(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            model=settings.ai_model,
            fallback_model=settings.ai_fallback_model,
            fallback_enabled=settings.model_fallback_enabled,
            retry_policy=RetryPolicy.from_settings(settings),
            timeout_ms=settings.model_timeout_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def complete(self, prompt: str, options: CompletionOptions | None = None) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: Full prompt text
            options: Model preference, sampling, and timeout overrides

        Returns:
            Generated text

        Raises:
            ModelError: After the preferred and fallback chains are exhausted,
                or immediately on a non-retryable failure
        """
        options = options or CompletionOptions()
        primary = options.preferred_model or self.model
        fallback = options.fallback_model or self.fallback_model

        try:
            return await self._run_chain(prompt, primary, options)
        except ModelError as e:
            if not (e.retryable and self.fallback_enabled and fallback and fallback != primary):
                raise
            logger.warning(
                f"{options.operation}: {primary} exhausted after {e.attempts} attempts "
                f"({e.kind.value}). Falling back to {fallback}"
            )
            return await self._run_chain(prompt, fallback, options)

    async def _run_chain(self, prompt: str, model: str, options: CompletionOptions) -> str:
        policy = self.retry_policy
        last_error: ModelError | None = None

        for attempt in range(1, policy.max_retries + 1):
            started = time.monotonic()
            logger.debug(f"{options.operation}: attempt {attempt}/{policy.max_retries} model={model}")
            try:
                text = await self._attempt(prompt, model, options)
            except ModelError as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                e.model = model
                e.attempts = attempt
                if not e.retryable:
                    logger.error(
                        f"{options.operation}: non-retryable {e.kind.value} from {model} "
                        f"on attempt {attempt} after {elapsed_ms}ms: {e.message}"
                    )
                    raise
                last_error = e
                if attempt < policy.max_retries:
                    wait_ms = policy.delay_ms(attempt)
                    logger.warning(
                        f"{options.operation}: {e.kind.value} from {model} on attempt "
                        f"{attempt}/{policy.max_retries} after {elapsed_ms}ms. "
                        f"Retrying in {wait_ms:.0f}ms..."
                    )
                    await asyncio.sleep(wait_ms / 1000)
                else:
                    logger.warning(
                        f"{options.operation}: {e.kind.value} from {model} on final attempt "
                        f"{attempt}/{policy.max_retries} after {elapsed_ms}ms"
                    )
                continue

            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.debug(
                f"{options.operation}: {model} answered on attempt {attempt} "
                f"in {elapsed_ms}ms ({len(text)} chars)"
            )
            return text

        assert last_error is not None
        raise last_error

    def _build_payload(self, prompt: str, options: CompletionOptions) -> dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": options.generation_config(),
            "safetySettings": SAFETY_SETTINGS,
        }

    async def _attempt(self, prompt: str, model: str, options: CompletionOptions) -> str:
        url = f"{self.base_url}/models/{model}:generateContent"
        timeout_s = (options.timeout_ms or self.timeout_ms) / 1000

        try:
            response = await asyncio.wait_for(
                self.client.post(url, json=self._build_payload(prompt, options), timeout=timeout_s),
                timeout=timeout_s,
            )
            response.raise_for_status()
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ModelError(
                ModelErrorKind.TIMEOUT, f"Request timed out after {timeout_s:g}s", model=model
            ) from e
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response, model) from e
        except httpx.RequestError as e:
            raise ModelError(ModelErrorKind.UNKNOWN, f"Network error: {e}", model=model) from e

        return self._extract_text(response, model)

    @staticmethod
    def _status_error(response: httpx.Response, model: str) -> ModelError:
        status = response.status_code
        try:
            detail = response.json().get("error", {}).get("message", "")
        except (ValueError, AttributeError):
            detail = response.text[:200]
        message = f"HTTP {status}: {detail}" if detail else f"HTTP {status}"

        if status == 429:
            kind = ModelErrorKind.RATE_LIMIT
        elif status >= 500:
            kind = ModelErrorKind.SERVER_ERROR
        else:
            kind = ModelErrorKind.REQUEST_REJECTED
        return ModelError(kind, message, model=model, status_code=status)

    @staticmethod
    def _extract_text(response: httpx.Response, model: str) -> str:
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            # Raw text completion endpoint
            if response.text.strip():
                return response.text
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE, "Empty response body", model=model, retryable=True
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE, "Response body is not valid JSON",
                model=model, retryable=True,
            ) from e
        if not isinstance(data, dict):
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE,
                f"Response body is a JSON {type(data).__name__}, not an object",
                model=model,
                retryable=True,
            )

        feedback = data.get("promptFeedback")
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE,
                f"Prompt blocked by safety filters: {block_reason}",
                model=model,
                retryable=False,
            )

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            finish = None
            candidates = data.get("candidates")
            if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
                finish = candidates[0].get("finishReason")
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE,
                f"Response missing candidates[0].content.parts[0].text (finishReason={finish})",
                model=model,
                retryable=True,
            ) from e

        if not isinstance(text, str) or not text.strip():
            raise ModelError(
                ModelErrorKind.INVALID_RESPONSE, "Model returned empty text",
                model=model, retryable=True,
            )
        return text
