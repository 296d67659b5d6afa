"""
Heuristic rubric scorer.

Five dimensions, each scored 0-5, combined into a 0-25 total:

- clinical_detail: vignette cues (age, sex, presentation, timeline,
  examination, history) found in the stem, capped at 5
- option_homogeneity: 5 minus the coefficient of variation of option lengths
- explanation_completeness: explanation length against a target length
- distractor_coverage: distractor rationales written, plus one for pearls
- lead_in_quality: focused "most likely / best" question, ends in "?",
  positively phrased, and a stem long enough to answer without the options

QuestionScorer.score is a coroutine so a model-graded scorer (see
model_scorer.ModelGradedScorer) can stand in for RubricScorer. The
heuristic scoring itself is synchronous and available as evaluate().
"""
from __future__ import annotations

import re
import statistics
from collections.abc import Mapping
from typing import Protocol

from mcqgen.models import DraftQuestion, ResearchContext, RubricScore

MAX_DIMENSION_SCORE = 5
MAX_TOTAL_SCORE = 25

DIMENSIONS: tuple[str, ...] = (
    "clinical_detail",
    "option_homogeneity",
    "explanation_completeness",
    "distractor_coverage",
    "lead_in_quality",
)

DEFAULT_WEIGHTS: dict[str, float] = {name: 1.0 for name in DIMENSIONS}


class QuestionScorer(Protocol):
    """Anything that can grade a draft on the 0-25 rubric."""

    async def score(self, draft: DraftQuestion, context: ResearchContext) -> RubricScore: ...


# Vignette cues counted toward clinical_detail
CLINICAL_CUE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("age", re.compile(r"\b\d{1,3}[- ](?:year|month|week|day)s?[- ]old\b", re.IGNORECASE)),
    ("sex", re.compile(r"\b(?:male|female|man|woman|boy|girl)\b", re.IGNORECASE)),
    ("presentation", re.compile(r"\b(?:presents?|presenting|complains?|reports?)\b", re.IGNORECASE)),
    (
        "timeline",
        re.compile(
            r"\b\d+[- ](?:hour|day|week|month|year)s?\s+history\b"
            r"|\b(?:for|over)\s+(?:the\s+(?:past|last)\s+)?\d+\s+(?:hours?|days?|weeks?|months?|years?)\b",
            re.IGNORECASE,
        ),
    ),
    ("examination", re.compile(r"\b(?:examination|reveals?|demonstrates?)\b", re.IGNORECASE)),
    ("history", re.compile(r"\b(?:history of|medications?|laboratory|biopsy)\b", re.IGNORECASE)),
)

FOCUSED_LEAD_IN_RE = re.compile(
    r"\b(?:most likely|best|most appropriate|next step|most accurate)\b", re.IGNORECASE
)
NEGATIVE_PHRASING_RE = re.compile(r"\b(?:except|not|least)\b", re.IGNORECASE)


class RubricScorer:
    """Default heuristic implementation of QuestionScorer."""

    EXPLANATION_TARGET_CHARS = 600
    ANSWERABLE_STEM_CHARS = 120

    def __init__(
        self,
        pass_threshold: int = 20,
        weights: Mapping[str, float] | None = None,
    ):
        self.pass_threshold = pass_threshold
        self.weights = dict(DEFAULT_WEIGHTS)
        if weights:
            unknown = set(weights) - set(DIMENSIONS)
            if unknown:
                raise ValueError(f"Unknown rubric dimensions: {sorted(unknown)}")
            if any(weight < 0 for weight in weights.values()):
                raise ValueError("Rubric weights must be non-negative")
            self.weights.update(weights)

    async def score(self, draft: DraftQuestion, context: ResearchContext) -> RubricScore:
        return self.evaluate(draft, context)

    def evaluate(self, draft: DraftQuestion, context: ResearchContext) -> RubricScore:
        """Score the draft with the heuristics, without I/O."""
        dimensions = {
            "clinical_detail": self._clinical_detail(draft),
            "option_homogeneity": self._option_homogeneity(draft),
            "explanation_completeness": self._explanation_completeness(draft),
            "distractor_coverage": self._distractor_coverage(draft),
            "lead_in_quality": self._lead_in_quality(draft),
        }
        return self.build_score(dimensions)

    def build_score(self, dimensions: Mapping[str, int]) -> RubricScore:
        """Weight per-dimension scores into a RubricScore against this threshold."""
        dimensions = {name: dimensions.get(name, 0) for name in DIMENSIONS}
        total = self._weighted_total(dimensions)
        return RubricScore(
            dimensions=dimensions,
            total=total,
            passed=total >= self.pass_threshold,
            threshold=self.pass_threshold,
        )

    def _weighted_total(self, dimensions: Mapping[str, int]) -> int:
        weight_sum = sum(self.weights.values()) or 1.0
        # Weights are rescaled to sum to the number of dimensions, keeping the 0-25 range
        scale = len(DIMENSIONS) / weight_sum
        raw = sum(dimensions[name] * self.weights[name] * scale for name in DIMENSIONS)
        return max(0, min(MAX_TOTAL_SCORE, int(raw + 0.5)))

    def _clinical_detail(self, draft: DraftQuestion) -> int:
        hits = sum(1 for _, pattern in CLINICAL_CUE_PATTERNS if pattern.search(draft.stem))
        return min(MAX_DIMENSION_SCORE, hits)

    def _option_homogeneity(self, draft: DraftQuestion) -> int:
        lengths = [len(option.text.strip()) for option in draft.options if option.text.strip()]
        if len(lengths) < 2:
            return 0
        mean = statistics.fmean(lengths)
        variation = statistics.pstdev(lengths) / mean
        return int(MAX_DIMENSION_SCORE * (1 - min(variation, 1.0)) + 0.5)

    def _explanation_completeness(self, draft: DraftQuestion) -> int:
        ratio = min(1.0, len(draft.explanation.strip()) / self.EXPLANATION_TARGET_CHARS)
        return int(MAX_DIMENSION_SCORE * ratio)

    def _distractor_coverage(self, draft: DraftQuestion) -> int:
        written = sum(1 for text in draft.distractor_rationales if text.strip())
        bonus = 1 if draft.pearls else 0
        return min(MAX_DIMENSION_SCORE, written + bonus)

    def _lead_in_quality(self, draft: DraftQuestion) -> int:
        lead_in = draft.lead_in.strip()
        if not lead_in:
            return 0
        points = 0
        if FOCUSED_LEAD_IN_RE.search(lead_in):
            points += 2
        if lead_in.endswith("?"):
            points += 1
        if not NEGATIVE_PHRASING_RE.search(lead_in):
            points += 1
        if len(draft.stem.strip()) >= self.ANSWERABLE_STEM_CHARS:
            points += 1
        return min(MAX_DIMENSION_SCORE, points)
