"""
Pipeline variants.

A variant is a PipelineStrategy value: which context provider to consult,
which prompt template to draft with, how to weight the rubric, and which
model to prefer. The refinement controller is the same for every variant.

Variants:
- board_style: literature + knowledge base, full board-style prompt, primary model
- rapid: knowledge base only, short prompt, flash model first, 3 rounds
- offline: no external context, board-style prompt
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from mcqgen.context.providers import CompositeContextProvider, ContextProvider, NullContextProvider
from mcqgen.generation.prompts import BOARD_STYLE_TEMPLATE, RAPID_TEMPLATE, PromptTemplate
from mcqgen.llm.gemini_client import CompletionOptions, GenerationProfile, ModelClient
from mcqgen.models import PipelineVariant
from mcqgen.quality.model_scorer import ModelGradedScorer
from mcqgen.quality.rubric_scorer import DEFAULT_WEIGHTS, QuestionScorer, RubricScorer

RAPID_WEIGHTS: dict[str, float] = {
    "clinical_detail": 0.8,
    "option_homogeneity": 1.2,
    "explanation_completeness": 0.8,
    "distractor_coverage": 1.0,
    "lead_in_quality": 1.2,
}


@dataclass(frozen=True)
class PipelineStrategy:
    """Everything that differs between pipeline variants."""

    variant: PipelineVariant
    context_provider: ContextProvider
    template: PromptTemplate
    rubric_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    preferred_model: str | None = None
    fallback_model: str | None = None
    max_iterations: int | None = None
    description: str = ""

    def completion_options(self, timeout_ms: int | None = None) -> CompletionOptions:
        return CompletionOptions(
            preferred_model=self.preferred_model,
            fallback_model=self.fallback_model,
            timeout_ms=timeout_ms,
            profile=GenerationProfile.DRAFTING,
            operation=f"drafting:{self.variant.value}",
        )

    def build_scorer(
        self, pass_threshold: int = 20, scoring_client: ModelClient | None = None
    ) -> QuestionScorer:
        """Heuristic rubric, or model grading when a scoring client is given."""
        heuristic = RubricScorer(pass_threshold=pass_threshold, weights=self.rubric_weights)
        if scoring_client is None:
            return heuristic
        return ModelGradedScorer(
            scoring_client,
            heuristic,
            options=CompletionOptions(
                preferred_model=self.preferred_model,
                fallback_model=self.fallback_model,
                profile=GenerationProfile.SCORING,
                response_format="json",
                operation=f"scoring:{self.variant.value}",
            ),
        )


def build_strategies(
    literature: ContextProvider | None = None,
    knowledge_base: ContextProvider | None = None,
    *,
    primary_model: str = "gemini-2.5-pro",
    fast_model: str = "gemini-2.5-flash",
) -> dict[PipelineVariant, PipelineStrategy]:
    """
    Build the variant registry from the available context providers.

    Args:
        literature: Provider for published literature, if enabled
        knowledge_base: Provider backed by a KnowledgeBaseStore, if one is open
        primary_model: Model preferred by the thorough variants
        fast_model: Model preferred by the rapid variant

    Returns:
        Mapping of every PipelineVariant to its strategy
    """
    board_sources = [p for p in (literature, knowledge_base) if p is not None]
    if len(board_sources) > 1:
        board_context: ContextProvider = CompositeContextProvider(board_sources)
    elif board_sources:
        board_context = board_sources[0]
    else:
        board_context = NullContextProvider()

    return {
        PipelineVariant.BOARD_STYLE: PipelineStrategy(
            variant=PipelineVariant.BOARD_STYLE,
            context_provider=board_context,
            template=BOARD_STYLE_TEMPLATE,
            preferred_model=primary_model,
            fallback_model=fast_model,
            description="Literature-grounded board-style item, primary model",
        ),
        PipelineVariant.RAPID: PipelineStrategy(
            variant=PipelineVariant.RAPID,
            context_provider=knowledge_base or NullContextProvider(),
            template=RAPID_TEMPLATE,
            rubric_weights=RAPID_WEIGHTS,
            preferred_model=fast_model,
            fallback_model=primary_model,
            max_iterations=3,
            description="Short prompt on the fast model, knowledge base only",
        ),
        PipelineVariant.OFFLINE: PipelineStrategy(
            variant=PipelineVariant.OFFLINE,
            context_provider=NullContextProvider(),
            template=BOARD_STYLE_TEMPLATE,
            preferred_model=primary_model,
            fallback_model=fast_model,
            description="Board-style item with no external context",
        ),
    }
