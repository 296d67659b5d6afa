"""
Unit tests for the drafting agent and prompt templates.
"""

import pytest

from mcqgen.errors import ModelError, ModelErrorKind, SemanticEmptinessError
from mcqgen.generation.drafting import DraftingAgent
from mcqgen.generation.prompts import BOARD_STYLE_TEMPLATE, RAPID_TEMPLATE, render_history
from mcqgen.llm.gemini_client import CompletionOptions, GenerationProfile
from mcqgen.models import (
    ContextSource,
    DraftQuestion,
    GenerationRequest,
    IterationRecord,
    ResearchContext,
    RubricScore,
    SourceContext,
    ValidationResult,
)
from mcqgen.quality.rubric_scorer import DIMENSIONS

REQUEST = GenerationRequest(topic="Acne vulgaris", difficulty=0.6)
CONTEXT = ResearchContext(
    sources=(SourceContext(source=ContextSource.NCBI, snippets=("Title: Acne review\nPMID: 1",)),)
)


def _failed_record(index, error):
    return IterationRecord(
        index=index,
        draft=DraftQuestion(stem="", lead_in=""),
        validation=ValidationResult(is_valid=False, errors=(error,), score=55),
        rubric=RubricScore.not_scored(list(DIMENSIONS)),
        trigger="initial draft",
    )


class TestPromptTemplates:
    """Prompt rendering."""

    def test_board_style_prompt(self):
        prompt = BOARD_STYLE_TEMPLATE.render(
            topic="Acne vulgaris", context=CONTEXT, difficulty=0.6, difficulty_label="Advanced"
        )

        assert '"Acne vulgaris"' in prompt
        assert "Advanced (0.60" in prompt
        assert "[Source Article 1]\nTitle: Acne review" in prompt
        assert "CLINICAL_VIGNETTE:" in prompt
        assert "PREVIOUS ATTEMPTS" not in prompt

    def test_empty_context_omits_heading(self):
        prompt = RAPID_TEMPLATE.render(
            topic="Rosacea", context=ResearchContext.empty(), difficulty=0.3, difficulty_label="Basic"
        )

        assert BOARD_STYLE_TEMPLATE.context_heading not in prompt
        assert "Rosacea" in prompt

    def test_history_section(self):
        history = [_failed_record(1, "MISSING_LEAD_IN: Lead-in question is missing")]
        text = render_history(history)

        assert text.startswith("PREVIOUS ATTEMPTS FAILED REVIEW")
        assert "Attempt 1: structurally invalid" in text
        assert "MISSING_LEAD_IN" in text

    def test_topic_with_braces(self):
        prompt = BOARD_STYLE_TEMPLATE.render(
            topic="{odd} topic", context=ResearchContext.empty(), difficulty=0.5, difficulty_label="Advanced"
        )

        assert '"{odd} topic"' in prompt


class TestDraftingAgent:
    """DraftingAgent.draft()."""

    @pytest.mark.asyncio
    async def test_draft_from_well_formed_response(self, scripted_client, well_formed_response):
        client = scripted_client([well_formed_response])
        agent = DraftingAgent(client)

        draft = await agent.draft(REQUEST, CONTEXT)

        assert draft.correct_option.text == "Acne vulgaris"
        assert len(draft.options) == 5
        assert "Acne vulgaris" in client.prompts[0]
        assert "[Source Article 1]" in client.prompts[0]

    @pytest.mark.asyncio
    async def test_default_options_use_drafting_profile(self, scripted_client, well_formed_response):
        client = scripted_client([well_formed_response])

        await DraftingAgent(client).draft(REQUEST, CONTEXT)

        assert client.options[0].profile == GenerationProfile.DRAFTING

    @pytest.mark.asyncio
    async def test_explicit_options_passed_through(self, scripted_client, well_formed_response):
        client = scripted_client([well_formed_response])
        options = CompletionOptions(preferred_model="gemini-2.5-flash")

        await DraftingAgent(client).draft(REQUEST, CONTEXT, options=options)

        assert client.options[0] is options

    @pytest.mark.asyncio
    async def test_history_in_prompt(self, scripted_client, well_formed_response):
        client = scripted_client([well_formed_response])
        history = (_failed_record(1, "OPTION_COUNT: Expected 5 options, found 3"),)

        await DraftingAgent(client).draft(REQUEST, CONTEXT, history=history)

        assert "PREVIOUS ATTEMPTS FAILED REVIEW" in client.prompts[0]
        assert "found 3" in client.prompts[0]

    @pytest.mark.asyncio
    async def test_semantically_empty_response(self, scripted_client, malformed_response):
        """A response with nothing usable raises with a truncated excerpt."""
        client = scripted_client([malformed_response])
        agent = DraftingAgent(client, raw_text_log_limit=20)

        with pytest.raises(SemanticEmptinessError) as exc_info:
            await agent.draft(REQUEST, CONTEXT)

        assert exc_info.value.raw_excerpt == malformed_response[:20]
        assert exc_info.value.draft.raw_model_text == malformed_response

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fixture_name, missing",
        [
            ("vignette_only_response", ("options", "rationale")),
            ("no_rationale_response", ("rationale",)),
        ],
    )
    async def test_missing_core_section(self, request, scripted_client, fixture_name, missing):
        """Any one of vignette, options, or rationale missing makes the draft empty."""
        client = scripted_client([request.getfixturevalue(fixture_name)])

        with pytest.raises(SemanticEmptinessError) as exc_info:
            await DraftingAgent(client).draft(REQUEST, CONTEXT)

        assert exc_info.value.missing == missing
        assert "rationale" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_partial_response_is_returned(self, scripted_client, four_option_response):
        """Structurally incomplete drafts with their core sections go on to the validator."""
        client = scripted_client([four_option_response])

        draft = await DraftingAgent(client).draft(REQUEST, CONTEXT)

        assert draft.stem.startswith("A 30-year-old woman")
        assert len(draft.options) == 4
        assert draft.correct_option.text == "Lichen planus"

    @pytest.mark.asyncio
    async def test_model_error_propagates(self, scripted_client):
        client = scripted_client([ModelError(ModelErrorKind.SERVER_ERROR, "HTTP 500")])

        with pytest.raises(ModelError):
            await DraftingAgent(client).draft(REQUEST, CONTEXT)
