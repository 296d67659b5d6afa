"""
Unit tests for the heuristic rubric scorer.
"""

from dataclasses import replace

import pytest

from mcqgen.models import AnswerOption, DraftQuestion, ResearchContext
from mcqgen.quality.rubric_scorer import DIMENSIONS, RubricScorer

CONTEXT = ResearchContext.empty()


class TestDimensions:
    """Per-dimension scores on known drafts."""

    def test_well_formed_draft(self, valid_draft):
        """The acne vignette scores high on every dimension and passes."""
        score = RubricScorer().evaluate(valid_draft, CONTEXT)

        assert score.dimensions == {
            "clinical_detail": 5,
            "option_homogeneity": 4,
            "explanation_completeness": 5,
            "distractor_coverage": 5,
            "lead_in_quality": 5,
        }
        assert score.total == 24
        assert score.passed
        assert score.threshold == 20
        assert not score.skipped

    def test_empty_draft_scores_zero(self):
        score = RubricScorer().evaluate(DraftQuestion(stem="", lead_in=""), CONTEXT)

        assert score.total == 0
        assert not score.passed
        assert set(score.dimensions) == set(DIMENSIONS)

    def test_weakest_dimension(self, valid_draft):
        """The lowest dimension is reported for revision prompts."""
        score = RubricScorer().evaluate(valid_draft, CONTEXT)

        assert score.weakest_dimension == "option_homogeneity"

    def test_negative_lead_in_loses_points(self, valid_draft):
        positive = RubricScorer().evaluate(valid_draft, CONTEXT)
        negative = RubricScorer().evaluate(
            replace(valid_draft, lead_in="Which of the following is NOT a feature?"), CONTEXT
        )

        assert negative.dimensions["lead_in_quality"] < positive.dimensions["lead_in_quality"]

    def test_single_option_has_no_homogeneity(self, valid_draft):
        score = RubricScorer().evaluate(
            replace(valid_draft, options=[AnswerOption(text="Acne vulgaris")]), CONTEXT
        )

        assert score.dimensions["option_homogeneity"] == 0


class TestBounds:
    """Scores stay in range for any draft."""

    @pytest.mark.parametrize(
        "draft",
        [
            DraftQuestion(stem="", lead_in=""),
            DraftQuestion(stem="x" * 5000, lead_in="?" * 500, explanation="y" * 10000),
            DraftQuestion(
                stem="A 1-day-old girl presents; examination reveals; history of; for 3 days",
                lead_in="What is the best next step?",
                options=[AnswerOption(text=t) for t in ("a", "bbbbbbbbbbbbbbbbbbbbbbbbbbbbbb", "", "cc", "d")],
                distractor_rationales=["r"] * 10,
                pearls=["p"],
            ),
        ],
    )
    def test_total_in_range(self, draft):
        score = RubricScorer().evaluate(draft, CONTEXT)

        assert 0 <= score.total <= 25
        assert all(0 <= value <= 5 for value in score.dimensions.values())

    def test_explanation_monotonic(self, valid_draft):
        """Longer explanations never score lower."""
        scorer = RubricScorer()
        previous = -1
        for length in (0, 50, 120, 240, 360, 480, 600, 900):
            score = scorer.evaluate(replace(valid_draft, explanation="e" * length), CONTEXT)
            value = score.dimensions["explanation_completeness"]
            assert value >= previous
            previous = value
        assert previous == 5

    def test_more_distractor_rationales_never_lower(self, valid_draft):
        scorer = RubricScorer()
        totals = [
            scorer.evaluate(
                replace(valid_draft, distractor_rationales=valid_draft.distractor_rationales[:n]),
                CONTEXT,
            ).total
            for n in range(5)
        ]

        assert totals == sorted(totals)


class TestWeightsAndThreshold:
    """Configurable weights and the pass threshold."""

    def test_threshold(self, valid_draft):
        score = RubricScorer(pass_threshold=25).evaluate(valid_draft, CONTEXT)

        assert score.total == 24
        assert not score.passed
        assert score.threshold == 25

    def test_unknown_dimension_rejected(self):
        with pytest.raises(ValueError):
            RubricScorer(weights={"spelling": 1.0})

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            RubricScorer(weights={"clinical_detail": -1.0})

    def test_weights_keep_range(self, valid_draft):
        """Uneven weights are rescaled so the total stays within 0-25."""
        scorer = RubricScorer(weights={"clinical_detail": 3.0, "option_homogeneity": 0.0})
        score = scorer.evaluate(valid_draft, CONTEXT)

        # clinical 5*3 + explanation 5 + distractor 5 + lead-in 5 = 30, scaled by 5/6
        assert score.total == 25

    def test_zero_weight_ignores_dimension(self, valid_draft):
        weighted = RubricScorer(weights={"option_homogeneity": 0.0})
        flat = replace(valid_draft, options=[AnswerOption(text="A"), AnswerOption(text="B" * 40)])

        assert weighted.evaluate(flat, CONTEXT).total == weighted.evaluate(valid_draft, CONTEXT).total


class TestQuestionScorerInterface:
    """RubricScorer as an awaitable QuestionScorer."""

    @pytest.mark.asyncio
    async def test_score_matches_evaluate(self, valid_draft):
        scorer = RubricScorer()

        score = await scorer.score(valid_draft, CONTEXT)

        assert score == scorer.evaluate(valid_draft, CONTEXT)
        assert score.scored_by == "heuristic"

    def test_build_score_fills_missing_dimensions(self):
        score = RubricScorer().build_score({"clinical_detail": 5})

        assert set(score.dimensions) == set(DIMENSIONS)
        assert score.total == 5
        assert not score.passed
