"""mcqgen - bounded LLM pipeline for board-style multiple-choice questions.

Usage:
    from mcqgen import GenerationRequest, QuestionPipeline

    async with QuestionPipeline.from_settings() as pipeline:
        result = await pipeline.generate(GenerationRequest(topic="Acne vulgaris"))
        print(result.accepted, result.final_draft.lead_in)
"""
from mcqgen.errors import GenerationError, ModelError, ModelErrorKind, PipelineError, PipelineErrorKind
from mcqgen.models import (
    DraftQuestion,
    GenerationRequest,
    PipelineResult,
    PipelineVariant,
    ProgressEvent,
)
from mcqgen.pipeline.orchestrator import QuestionPipeline

__version__ = "0.3.0"

__all__ = [
    "DraftQuestion",
    "GenerationError",
    "GenerationRequest",
    "ModelError",
    "ModelErrorKind",
    "PipelineError",
    "PipelineErrorKind",
    "PipelineResult",
    "PipelineVariant",
    "ProgressEvent",
    "QuestionPipeline",
]
