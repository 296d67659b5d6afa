"""
Configuration settings for the mcqgen question-generation pipeline.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Model (Gemini REST API)
    # ========================================
    gemini_api_key: str | None = Field(
        default=None,
        description="Google Gemini API key",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the generateContent endpoint",
    )
    ai_model: str = Field(
        default="gemini-2.5-pro",
        description="Primary model used for drafting",
    )
    ai_fallback_model: str = Field(
        default="gemini-2.5-flash",
        description="Lighter model tried after the primary retry chain is exhausted",
    )
    model_fallback_enabled: bool = Field(
        default=True,
        description="Switch to the fallback model after the primary chain fails",
    )
    model_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per model before giving up on it",
    )
    model_base_delay_ms: int = Field(
        default=500,
        ge=0,
        description="First backoff delay between attempts",
    )
    model_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the delay after each failed attempt",
    )
    model_max_delay_ms: int = Field(
        default=8000,
        ge=0,
        description="Upper bound for a single backoff delay",
    )
    model_jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Random jitter added to each backoff, as a fraction of the delay",
    )
    model_timeout_ms: int = Field(
        default=120_000,
        gt=0,
        description="Per-call timeout for drafting requests",
    )

    # ========================================
    # Context Providers
    # ========================================
    context_fetch_timeout_ms: int = Field(
        default=15_000,
        gt=0,
        description="Timeout applied to each context source independently",
    )
    context_results_per_source: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Number of articles requested from each literature source",
    )
    ncbi_base_url: str = Field(
        default="https://eutils.ncbi.nlm.nih.gov/entrez/eutils",
        description="NCBI E-utilities base URL",
    )
    ncbi_tool: str = Field(
        default="mcqgen",
        description="Tool name reported to NCBI",
    )
    ncbi_email: str = Field(
        default="mcqgen@example.org",
        description="Contact email reported to NCBI",
    )
    openalex_base_url: str = Field(
        default="https://api.openalex.org",
        description="OpenAlex API base URL",
    )
    knowledge_base_path: str | None = Field(
        default=None,
        description="Path to a JSON knowledge base (topic -> entry)",
    )

    # ========================================
    # Refinement Pipeline
    # ========================================
    max_refinement_iterations: int = Field(
        default=5,
        ge=1,
        description="Maximum draft/validate/score rounds per request",
    )
    rubric_pass_threshold: int = Field(
        default=20,
        ge=0,
        le=25,
        description="Rubric total (out of 25) needed to accept a draft",
    )
    model_graded_scoring: bool = Field(
        default=False,
        description="Grade drafts with the model (SCORING preset) instead of the heuristic rubric",
    )
    stem_min_length: int = Field(
        default=100,
        ge=0,
        description="Vignettes shorter than this draw a soft validation penalty",
    )
    raw_text_log_limit: int = Field(
        default=1000,
        ge=0,
        description="Characters of raw model output kept when logging an empty draft",
    )

    # ========================================
    # Result Cache
    # ========================================
    cache_enabled: bool = Field(
        default=True,
        description="Memoize pipeline results in process",
    )
    cache_max_entries: int = Field(
        default=1000,
        ge=1,
        description="Entries kept before least-recently-used eviction",
    )
    cache_ttl_seconds: float | None = Field(
        default=None,
        description="Expire cache entries after this many seconds (None = never)",
    )
    difficulty_bucket_size: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Width of the difficulty buckets used in cache keys",
    )

    # ========================================
    # Progress Channel
    # ========================================
    progress_buffer_size: int = Field(
        default=64,
        ge=1,
        description="Events buffered per subscriber before the oldest is dropped",
    )
    progress_retained_sessions: int = Field(
        default=256,
        ge=1,
        description="Finished sessions kept for late subscribers",
    )
    progress_idle_timeout_seconds: float = Field(
        default=900.0,
        gt=0.0,
        description="Seconds without events before a subscriber stops waiting and an unwatched open session is evicted",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )

    @property
    def has_gemini(self) -> bool:
        """Check if Gemini credentials are configured."""
        return bool(self.gemini_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
