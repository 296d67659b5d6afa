"""
Structural validator for drafted questions.

Checks schema-level correctness only: required fields present, five
options, exactly one resolvable correct answer. Each failed check carries
a fixed penalty against a score that starts at 100 and is floored at 0.
Hard failures make the draft invalid; soft failures only cost points.

A second pass adds zero-penalty content warnings (duplicate options,
negatively phrased lead-ins, absolute terms) that never change the score.

validate() is a pure function: no I/O, no state, same input -> same result.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from mcqgen.models import DraftQuestion, ValidationResult

REQUIRED_OPTION_COUNT = 5


class ValidationSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Hard fail, draft is invalid
    WARNING = "warning"  # Soft fail or content note


@dataclass
class ValidationIssue:
    """A single validation issue."""
    code: str
    severity: ValidationSeverity
    message: str
    field: str = "general"  # stem, lead_in, options, answer, explanation

    def describe(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass
class _ValidationReport:
    """Mutable accumulator, frozen into a ValidationResult at the end."""
    score: int = 100
    issues: list[ValidationIssue] = field(default_factory=list)

    def add_issue(
        self,
        code: str,
        severity: ValidationSeverity,
        message: str,
        field: str = "general",
        penalty: int = 0,
    ):
        """Add an issue and apply score penalty."""
        self.issues.append(ValidationIssue(code, severity, message, field))
        self.score = max(0, self.score - penalty)

    def freeze(self) -> ValidationResult:
        errors = tuple(i.describe() for i in self.issues if i.severity == ValidationSeverity.ERROR)
        warnings = tuple(
            i.describe() for i in self.issues if i.severity == ValidationSeverity.WARNING
        )
        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            score=self.score,
        )


# =============================================================================
# Content warning patterns (no score penalty)
# =============================================================================

NEGATIVE_LEAD_IN_RE = re.compile(r"\b(EXCEPT|NOT|LEAST)\b")
ABSOLUTE_TERM_RE = re.compile(r"\b(always|never)\b", re.IGNORECASE)


class StructuralValidator:
    """
    Schema validator for DraftQuestion.

    Penalties:
        missing stem         -25  hard
        short stem           -10  soft
        missing lead-in      -20  hard
        option count != 5    -30  hard
        correct count != 1   -25  hard
        missing explanation  -15  soft
    """

    MISSING_STEM_PENALTY = 25
    SHORT_STEM_PENALTY = 10
    MISSING_LEAD_IN_PENALTY = 20
    OPTION_COUNT_PENALTY = 30
    CORRECT_COUNT_PENALTY = 25
    MISSING_EXPLANATION_PENALTY = 15

    OPTION_MIN_CHARS = 3
    EXPLANATION_MIN_CHARS = 50

    def __init__(self, stem_min_length: int = 100):
        self.stem_min_length = stem_min_length

    def validate(self, draft: DraftQuestion) -> ValidationResult:
        """Run every structural check and return a frozen result."""
        report = _ValidationReport()
        self._check_stem(draft, report)
        self._check_lead_in(draft, report)
        self._check_options(draft, report)
        self._check_answer(draft, report)
        self._check_explanation(draft, report)
        self._check_content_warnings(draft, report)
        return report.freeze()

    def _check_stem(self, draft: DraftQuestion, report: _ValidationReport):
        stem = draft.stem.strip()
        if not stem:
            report.add_issue(
                code="MISSING_STEM",
                severity=ValidationSeverity.ERROR,
                message="Question stem (clinical vignette) is missing",
                field="stem",
                penalty=self.MISSING_STEM_PENALTY,
            )
        elif len(stem) < self.stem_min_length:
            report.add_issue(
                code="SHORT_STEM",
                severity=ValidationSeverity.WARNING,
                message=f"Stem has {len(stem)} characters (min: {self.stem_min_length})",
                field="stem",
                penalty=self.SHORT_STEM_PENALTY,
            )

    def _check_lead_in(self, draft: DraftQuestion, report: _ValidationReport):
        if not draft.lead_in.strip():
            report.add_issue(
                code="MISSING_LEAD_IN",
                severity=ValidationSeverity.ERROR,
                message="Lead-in question is missing",
                field="lead_in",
                penalty=self.MISSING_LEAD_IN_PENALTY,
            )

    def _check_options(self, draft: DraftQuestion, report: _ValidationReport):
        count = len(draft.options)
        if count != REQUIRED_OPTION_COUNT:
            report.add_issue(
                code="OPTION_COUNT",
                severity=ValidationSeverity.ERROR,
                message=f"Expected {REQUIRED_OPTION_COUNT} options, found {count}",
                field="options",
                penalty=self.OPTION_COUNT_PENALTY,
            )

    def _check_answer(self, draft: DraftQuestion, report: _ValidationReport):
        count = draft.correct_option_count
        if count != 1:
            reason = "answer letter missing or outside A-E" if draft.ambiguous_answer else (
                f"correct index {draft.correct_index} does not match an option"
            )
            report.add_issue(
                code="CORRECT_COUNT",
                severity=ValidationSeverity.ERROR,
                message=f"Expected exactly 1 correct option, found {count} ({reason})",
                field="answer",
                penalty=self.CORRECT_COUNT_PENALTY,
            )

    def _check_explanation(self, draft: DraftQuestion, report: _ValidationReport):
        if not draft.explanation.strip():
            report.add_issue(
                code="MISSING_EXPLANATION",
                severity=ValidationSeverity.WARNING,
                message="Explanation is missing",
                field="explanation",
                penalty=self.MISSING_EXPLANATION_PENALTY,
            )

    def _check_content_warnings(self, draft: DraftQuestion, report: _ValidationReport):
        texts = [option.text.strip() for option in draft.options]

        seen: set[str] = set()
        for text in texts:
            key = text.lower()
            if key and key in seen:
                report.add_issue(
                    code="DUPLICATE_OPTION",
                    severity=ValidationSeverity.WARNING,
                    message=f"Duplicate option: {text!r}",
                    field="options",
                )
            seen.add(key)

        for text in texts:
            if 0 < len(text) < self.OPTION_MIN_CHARS:
                report.add_issue(
                    code="SHORT_OPTION",
                    severity=ValidationSeverity.WARNING,
                    message=f"Option {text!r} is shorter than {self.OPTION_MIN_CHARS} characters",
                    field="options",
                )
            if ABSOLUTE_TERM_RE.search(text):
                report.add_issue(
                    code="ABSOLUTE_TERM",
                    severity=ValidationSeverity.WARNING,
                    message=f"Option {text!r} uses an absolute term",
                    field="options",
                )

        negative = NEGATIVE_LEAD_IN_RE.search(draft.lead_in)
        if negative:
            report.add_issue(
                code="NEGATIVE_LEAD_IN",
                severity=ValidationSeverity.WARNING,
                message=f"Lead-in is negatively phrased ({negative.group(1)})",
                field="lead_in",
            )

        explanation = draft.explanation.strip()
        if explanation and len(explanation) < self.EXPLANATION_MIN_CHARS:
            report.add_issue(
                code="SHORT_EXPLANATION",
                severity=ValidationSeverity.WARNING,
                message=f"Explanation has {len(explanation)} characters (min: {self.EXPLANATION_MIN_CHARS})",
                field="explanation",
            )
