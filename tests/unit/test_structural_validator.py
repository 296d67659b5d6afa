"""
Unit tests for the structural validator.
"""

from dataclasses import replace

import pytest

from mcqgen.models import AnswerOption, DraftQuestion
from mcqgen.quality.structural_validator import StructuralValidator


@pytest.fixture
def validator():
    return StructuralValidator(stem_min_length=100)


def _codes(messages):
    return {message.split(":", 1)[0] for message in messages}


class TestPenalties:
    """Each structural check and its fixed penalty."""

    def test_valid_draft(self, validator, valid_draft):
        """A complete draft scores 100 with no errors."""
        result = validator.validate(valid_draft)

        assert result.is_valid
        assert result.score == 100
        assert result.errors == ()

    def test_missing_stem(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, stem=""))

        assert not result.is_valid
        assert result.score == 75
        assert _codes(result.errors) == {"MISSING_STEM"}

    def test_short_stem_is_soft(self, validator, valid_draft):
        """A short stem costs 10 points but keeps the draft valid."""
        result = validator.validate(replace(valid_draft, stem="A 16-year-old with acne."))

        assert result.is_valid
        assert result.score == 90
        assert "SHORT_STEM" in _codes(result.warnings)

    def test_missing_lead_in(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, lead_in="   "))

        assert not result.is_valid
        assert result.score == 80
        assert _codes(result.errors) == {"MISSING_LEAD_IN"}

    def test_wrong_option_count(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, options=valid_draft.options[:4]))

        assert not result.is_valid
        assert result.score == 70
        assert _codes(result.errors) == {"OPTION_COUNT"}
        assert "found 4" in result.errors[0]

    def test_ambiguous_answer(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, ambiguous_answer=True))

        assert not result.is_valid
        assert result.score == 75
        assert _codes(result.errors) == {"CORRECT_COUNT"}

    def test_correct_index_out_of_range(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, correct_index=7))

        assert not result.is_valid
        assert _codes(result.errors) == {"CORRECT_COUNT"}

    def test_missing_explanation_is_soft(self, validator, valid_draft):
        result = validator.validate(replace(valid_draft, explanation=""))

        assert result.is_valid
        assert result.score == 85
        assert "MISSING_EXPLANATION" in _codes(result.warnings)

    def test_score_floor(self, validator):
        """Penalties past 100 floor at zero."""
        result = validator.validate(DraftQuestion(stem="", lead_in="", ambiguous_answer=True))

        assert not result.is_valid
        assert result.score == 0
        assert _codes(result.errors) == {"MISSING_STEM", "MISSING_LEAD_IN", "OPTION_COUNT", "CORRECT_COUNT"}
        assert "MISSING_EXPLANATION" in _codes(result.warnings)

    def test_first_error_names_the_check(self, validator, valid_draft):
        """Error strings read 'CODE: message' so they can seed a revision."""
        result = validator.validate(replace(valid_draft, lead_in=""))

        assert result.errors[0].startswith("MISSING_LEAD_IN: ")


class TestContentWarnings:
    """Zero-penalty content notes."""

    def test_duplicate_option(self, validator, valid_draft):
        options = list(valid_draft.options)
        options[4] = AnswerOption(text="acne vulgaris")
        result = validator.validate(replace(valid_draft, options=options))

        assert result.is_valid
        assert result.score == 100
        assert "DUPLICATE_OPTION" in _codes(result.warnings)

    def test_negative_lead_in(self, validator, valid_draft):
        result = validator.validate(
            replace(valid_draft, lead_in="Each of the following is a cause EXCEPT which?")
        )

        assert result.score == 100
        assert "NEGATIVE_LEAD_IN" in _codes(result.warnings)

    def test_absolute_terms_and_short_options(self, validator, valid_draft):
        options = list(valid_draft.options)
        options[1] = AnswerOption(text="Always benign")
        options[2] = AnswerOption(text="No")
        result = validator.validate(replace(valid_draft, options=options))

        assert result.score == 100
        assert {"ABSOLUTE_TERM", "SHORT_OPTION"} <= _codes(result.warnings)


class TestDeterminism:
    """validate() is a pure function."""

    def test_same_input_same_result(self, validator, valid_draft):
        draft = replace(valid_draft, lead_in="", options=valid_draft.options[:3])

        assert validator.validate(draft) == validator.validate(draft)

    def test_draft_not_mutated(self, validator, valid_draft):
        snapshot = replace(valid_draft)
        validator.validate(valid_draft)

        assert valid_draft == snapshot
