"""
Exception taxonomy for the generation pipeline.

Transport failures surface as ModelError once the client's retry and
fallback chains are exhausted. Parsing problems are never raised; they are
encoded on the draft and caught by the structural validator. Semantic
emptiness is raised by the drafting agent and absorbed by the refinement
controller as a failed iteration.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcqgen.models import DraftQuestion


class GenerationError(Exception):
    """Base class for all pipeline failures."""


class ModelErrorKind(str, Enum):
    """Classification of a failed model call."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    INVALID_RESPONSE = "invalid_response"
    REQUEST_REJECTED = "request_rejected"
    UNKNOWN = "unknown"


RETRYABLE_MODEL_ERRORS = frozenset(
    {
        ModelErrorKind.TIMEOUT,
        ModelErrorKind.RATE_LIMIT,
        ModelErrorKind.SERVER_ERROR,
        ModelErrorKind.UNKNOWN,
    }
)


class ModelError(GenerationError):
    """A model call that failed after retry and fallback were exhausted."""

    def __init__(
        self,
        kind: ModelErrorKind,
        message: str,
        *,
        model: str | None = None,
        status_code: int | None = None,
        attempts: int = 0,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.model = model
        self.status_code = status_code
        self.attempts = attempts
        self.retryable = kind in RETRYABLE_MODEL_ERRORS if retryable is None else retryable
        # Set by the refinement controller when the failure aborts a run
        self.iteration: int | None = None

    def __str__(self) -> str:
        parts = [f"[{self.kind.value}] {self.message}"]
        if self.model:
            parts.append(f"model={self.model}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.iteration is not None:
            parts.append(f"iteration={self.iteration}")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "model": self.model,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "retryable": self.retryable,
            "iteration": self.iteration,
        }


class SemanticEmptinessError(GenerationError):
    """The model answered, but nothing usable could be parsed from it."""

    def __init__(self, draft: DraftQuestion, raw_excerpt: str, missing: tuple[str, ...] = ()):
        detail = ", ".join(missing) or "vignette, options, rationale"
        super().__init__(f"Model response is missing: {detail}")
        self.draft = draft
        self.raw_excerpt = raw_excerpt
        self.missing = missing


class PipelineErrorKind(str, Enum):
    """Failure modes of a generate() call that are not model errors."""

    CANCELLED = "cancelled"
    NO_USABLE_DRAFT = "no_usable_draft"
    CONFIGURATION = "configuration"


class PipelineError(GenerationError):
    """A generate() call that could not produce a result."""

    def __init__(self, kind: PipelineErrorKind, message: str, *, session_id: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.session_id = session_id

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class KnowledgeBaseError(GenerationError):
    """Knowledge-base store misuse or an unreadable knowledge-base file."""
