"""
Drafting agent.

One drafting pass: render the prompt, call the model, parse the response,
and check that something usable came back. Structural problems (missing
lead-in, four options, ambiguous answer) are left on the draft for the
validator. A response missing its vignette, its options, or its answer
rationale is rejected here, as SemanticEmptinessError.
"""
from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from mcqgen.errors import SemanticEmptinessError
from mcqgen.generation.prompts import BOARD_STYLE_TEMPLATE, PromptTemplate
from mcqgen.llm.gemini_client import CompletionOptions, GenerationProfile, ModelClient
from mcqgen.models import DraftQuestion, GenerationRequest, IterationRecord, ResearchContext
from mcqgen.parsing.structured_text import StructuredTextParser


class DraftingAgent:
    """Turns (topic, context, difficulty, history) into a DraftQuestion."""

    def __init__(
        self,
        model_client: ModelClient,
        parser: StructuredTextParser | None = None,
        raw_text_log_limit: int = 1000,
    ):
        self.model_client = model_client
        self.parser = parser or StructuredTextParser()
        self.raw_text_log_limit = raw_text_log_limit

    async def draft(
        self,
        request: GenerationRequest,
        context: ResearchContext,
        template: PromptTemplate = BOARD_STYLE_TEMPLATE,
        options: CompletionOptions | None = None,
        history: Sequence[IterationRecord] = (),
    ) -> DraftQuestion:
        """
        Produce one draft.

        Args:
            request: Topic and difficulty
            context: Research context rendered into the prompt
            template: Prompt template for the pipeline variant
            options: Model preferences; defaults to the drafting profile
            history: Earlier iterations, appended to the prompt on revisions

        Returns:
            Parsed draft, possibly structurally incomplete

        Raises:
            ModelError: The model call failed after retries and fallback
            SemanticEmptinessError: Vignette, options, or rationale missing
        """
        options = options or CompletionOptions(
            profile=GenerationProfile.DRAFTING, operation="drafting"
        )
        prompt = template.render(
            topic=request.topic,
            context=context,
            difficulty=request.difficulty,
            difficulty_label=request.difficulty_label,
            history=history,
        )
        attempt = len(history) + 1
        logger.debug(
            f"Drafting {request.topic!r} attempt {attempt} with template {template.name} "
            f"({len(prompt)} chars, {len(context.snippets)} context snippets)"
        )

        raw_text = await self.model_client.complete(prompt, options)
        parsed = self.parser.parse(raw_text)
        draft = parsed.to_draft()

        if parsed.is_semantically_empty:
            excerpt = raw_text[: self.raw_text_log_limit]
            logger.warning(
                f"ai_generation_semantically_empty topic={request.topic!r} attempt={attempt} "
                f"missing={','.join(parsed.missing_core_sections)} "
                f"raw_length={len(raw_text)} raw_text={excerpt!r}"
            )
            raise SemanticEmptinessError(
                draft=draft, raw_excerpt=excerpt, missing=parsed.missing_core_sections
            )

        if not parsed.is_complete:
            logger.info(
                f"Draft for {request.topic!r} is incomplete; sections found: "
                f"{', '.join(parsed.found_sections) or 'none'}"
            )
        return draft
