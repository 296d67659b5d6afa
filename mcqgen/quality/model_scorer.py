"""
Model-graded rubric scorer.

Asks the model to grade a draft on the same five dimensions RubricScorer
uses, then weights the grades the same way. The call uses the SCORING
sampling preset and a JSON response:

    {"rubric": {"clinical_detail": 4, ...}, "feedback": ["..."]}

Grades are clamped to 0-5. A dimension the model skipped, or graded with
something that is not a number, takes the heuristic value. A failed call
or a body that is not a JSON object falls back to RubricScorer entirely.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import replace
from typing import Any

from loguru import logger

from mcqgen.errors import ModelError
from mcqgen.generation.prompts import render_scoring_prompt
from mcqgen.llm.gemini_client import CompletionOptions, GenerationProfile, ModelClient
from mcqgen.models import DraftQuestion, ResearchContext, RubricScore
from mcqgen.quality.rubric_scorer import DIMENSIONS, MAX_DIMENSION_SCORE, RubricScorer

CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def _clamp_grade(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(0, min(MAX_DIMENSION_SCORE, int(number + 0.5)))


def parse_grades(raw_text: str) -> dict[str, int] | None:
    """
    Read per-dimension grades from a grading response.

    Returns:
        {dimension: 0-5} for the dimensions that carried a usable grade,
        or None when the body is not a JSON object
    """
    body = CODE_FENCE_RE.sub("", raw_text or "")
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    rubric = data.get("rubric", data)
    if not isinstance(rubric, dict):
        return None

    grades: dict[str, int] = {}
    for name in DIMENSIONS:
        grade = _clamp_grade(rubric.get(name))
        if grade is not None:
            grades[name] = grade
    return grades


class ModelGradedScorer:
    """QuestionScorer that grades with the model and falls back to heuristics."""

    def __init__(
        self,
        model_client: ModelClient,
        fallback: RubricScorer | None = None,
        *,
        pass_threshold: int = 20,
        options: CompletionOptions | None = None,
    ):
        self.model_client = model_client
        self.fallback = fallback or RubricScorer(pass_threshold=pass_threshold)
        self.options = options or CompletionOptions(
            profile=GenerationProfile.SCORING,
            response_format="json",
            operation="scoring",
        )

    @property
    def pass_threshold(self) -> int:
        return self.fallback.pass_threshold

    async def score(self, draft: DraftQuestion, context: ResearchContext) -> RubricScore:
        prompt = render_scoring_prompt(draft, context)
        try:
            raw_text = await self.model_client.complete(prompt, self.options)
        except ModelError as e:
            logger.warning(f"Model grading failed ({e.kind.value}); using heuristic rubric")
            return self.fallback.evaluate(draft, context)

        grades = parse_grades(raw_text)
        if grades is None:
            logger.warning(
                f"Model grading returned no JSON object ({len(raw_text or '')} chars); "
                f"using heuristic rubric"
            )
            return self.fallback.evaluate(draft, context)

        missing = [name for name in DIMENSIONS if name not in grades]
        if missing:
            heuristic = self.fallback.evaluate(draft, context)
            logger.debug(f"Model grading skipped {', '.join(missing)}; filled from heuristics")
            for name in missing:
                grades[name] = heuristic.dimensions[name]

        return replace(self.fallback.build_score(grades), scored_by="model")
