"""Gemini model client with retry and fallback."""
from mcqgen.llm.gemini_client import (
    CompletionOptions,
    GeminiClient,
    GenerationProfile,
    ModelClient,
    RetryPolicy,
)

__all__ = [
    "CompletionOptions",
    "GeminiClient",
    "GenerationProfile",
    "ModelClient",
    "RetryPolicy",
]
