"""Draft quality gates.

- StructuralValidator: schema checks, 0-100 score, hard/soft failures
- RubricScorer: five heuristic dimensions, 0-25 total
- ModelGradedScorer: the same rubric graded by the model
"""
from mcqgen.quality.model_scorer import ModelGradedScorer
from mcqgen.quality.rubric_scorer import DIMENSIONS, QuestionScorer, RubricScorer
from mcqgen.quality.structural_validator import StructuralValidator

__all__ = ["DIMENSIONS", "ModelGradedScorer", "QuestionScorer", "RubricScorer", "StructuralValidator"]
