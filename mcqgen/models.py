"""
Data model shared by every pipeline stage.

GenerationRequest is validated with Pydantic at the boundary; the records
produced inside a run are plain dataclasses. Records marked immutable are
frozen; DraftQuestion and PipelineResult stay mutable so callers can edit
what they receive (the cache hands out copies).
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Enums
# =============================================================================


class PipelineVariant(str, Enum):
    """Registered pipeline strategies."""

    BOARD_STYLE = "board_style"
    RAPID = "rapid"
    OFFLINE = "offline"


class ContextSource(str, Enum):
    """Where a block of research context came from."""

    NCBI = "ncbi"
    OPENALEX = "openalex"
    KNOWLEDGE_BASE = "knowledge_base"


class ProgressStage(str, Enum):
    INIT = "init"
    CONTEXT = "context"
    DRAFT = "draft"
    VALIDATE = "validate"
    SCORE = "score"
    REFINE = "refine"
    SAVE = "save"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"


class TerminalState(str, Enum):
    """How a refinement run ended."""

    ACCEPTED = "accepted"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    ERROR = "error"


# Difficulty labels used in prompts, keyed by the upper bound of each band
DIFFICULTY_LEVELS: tuple[tuple[float, str], ...] = (
    (0.45, "Basic"),
    (0.75, "Advanced"),
    (1.0, "Very Difficult"),
)


# =============================================================================
# Request
# =============================================================================


class GenerationRequest(BaseModel):
    """One call to the pipeline. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., min_length=1, description="Subject of the question")
    difficulty: float = Field(default=0.6, ge=0.0, le=1.0)
    variant: PipelineVariant = Field(default=PipelineVariant.BOARD_STYLE)
    use_cache: bool = Field(default=True)

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("topic must not be empty")
        return value

    @property
    def difficulty_label(self) -> str:
        for upper, label in DIFFICULTY_LEVELS:
            if self.difficulty <= upper:
                return label
        return DIFFICULTY_LEVELS[-1][1]


# =============================================================================
# Research context
# =============================================================================


@dataclass(frozen=True)
class SourceContext:
    """Result of fetching one context source."""

    source: ContextSource
    snippets: tuple[str, ...] = ()
    fetch_duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ResearchContext:
    """Ordered per-source context for one request. Read-only after the fetch."""

    sources: tuple[SourceContext, ...] = ()

    @classmethod
    def empty(cls) -> ResearchContext:
        return cls(sources=())

    @property
    def snippets(self) -> list[str]:
        return [snippet for source in self.sources for snippet in source.snippets]

    @property
    def errors(self) -> dict[str, str]:
        return {s.source.value: s.error for s in self.sources if s.error is not None}

    @property
    def is_empty(self) -> bool:
        return not self.snippets

    def to_prompt_block(self, max_chars: int = 6000) -> str:
        """Render snippets as numbered source articles, truncated to max_chars."""
        blocks = [
            f"[Source Article {n}]\n{snippet}" for n, snippet in enumerate(self.snippets, start=1)
        ]
        text = "\n\n".join(blocks)
        if len(text) > max_chars:
            text = text[:max_chars].rstrip() + "\n[...]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources": [
                {
                    "source": s.source.value,
                    "snippets": list(s.snippets),
                    "fetch_duration_ms": s.fetch_duration_ms,
                    "error": s.error,
                }
                for s in self.sources
            ]
        }


# =============================================================================
# Draft and quality records
# =============================================================================


@dataclass(frozen=True)
class AnswerOption:
    text: str


@dataclass
class DraftQuestion:
    """One candidate question produced by a single drafting pass."""

    stem: str
    lead_in: str
    options: list[AnswerOption] = field(default_factory=list)
    correct_index: int = 0
    explanation: str = ""
    raw_model_text: str = ""
    ambiguous_answer: bool = False
    correct_rationale: str = ""
    distractor_rationales: list[str] = field(default_factory=list)
    pearls: list[str] = field(default_factory=list)
    quality_checklist: dict[str, bool] = field(default_factory=dict)

    @property
    def correct_option_count(self) -> int:
        """Number of options flagged correct: 0 when the answer could not be resolved."""
        if self.ambiguous_answer or not 0 <= self.correct_index < len(self.options):
            return 0
        return 1

    @property
    def correct_option(self) -> AnswerOption | None:
        if self.correct_option_count != 1:
            return None
        return self.options[self.correct_index]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationResult:
    """Structural validation of a draft. Recomputed every iteration."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    score: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "score": self.score,
        }


@dataclass(frozen=True)
class RubricScore:
    """Per-dimension quality scores (0-5 each) and their 0-25 total."""

    dimensions: dict[str, int]
    total: int
    passed: bool
    threshold: int = 20
    skipped: bool = False
    scored_by: str = "heuristic"

    @classmethod
    def not_scored(cls, dimension_names: list[str], threshold: int = 20) -> RubricScore:
        """Zero score for drafts that never reached the scorer."""
        return cls(
            dimensions={name: 0 for name in dimension_names},
            total=0,
            passed=False,
            threshold=threshold,
            skipped=True,
        )

    @property
    def weakest_dimension(self) -> str | None:
        """Lowest-scoring dimension; ties go to the first one listed."""
        if not self.dimensions:
            return None
        return min(self.dimensions, key=lambda name: self.dimensions[name])

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimensions": dict(self.dimensions),
            "total": self.total,
            "passed": self.passed,
            "threshold": self.threshold,
            "skipped": self.skipped,
            "scored_by": self.scored_by,
        }


@dataclass(frozen=True)
class IterationRecord:
    """One draft/validate/score cycle. Immutable once appended."""

    index: int
    draft: DraftQuestion
    validation: ValidationResult
    rubric: RubricScore
    trigger: str
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "draft": self.draft.to_dict(),
            "validation": self.validation.to_dict(),
            "rubric": self.rubric.to_dict(),
            "trigger": self.trigger,
            "duration_ms": self.duration_ms,
        }


# =============================================================================
# Pipeline output and progress
# =============================================================================


@dataclass
class PipelineResult:
    """Terminal artifact of a generate() call."""

    final_draft: DraftQuestion
    iterations: list[IterationRecord] = field(default_factory=list)
    accepted: bool = False
    cache_hit: bool = False
    total_duration_ms: int = 0
    session_id: str | None = None
    variant: PipelineVariant | None = None
    terminal_state: TerminalState = TerminalState.MAX_ITERATIONS_EXCEEDED
    error: str | None = None

    @property
    def best_rubric_total(self) -> int:
        return max((record.rubric.total for record in self.iterations), default=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_draft": self.final_draft.to_dict(),
            "iterations": [record.to_dict() for record in self.iterations],
            "accepted": self.accepted,
            "cache_hit": self.cache_hit,
            "total_duration_ms": self.total_duration_ms,
            "session_id": self.session_id,
            "variant": self.variant.value if self.variant else None,
            "terminal_state": self.terminal_state.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """A stage transition within one generation session."""

    session_id: str
    stage: ProgressStage
    status: ProgressStatus
    message: str | None = None
    timestamp_ms: int = field(default_factory=now_ms)
    iteration: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ProgressStage.COMPLETE, ProgressStage.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "iteration": self.iteration,
        }
