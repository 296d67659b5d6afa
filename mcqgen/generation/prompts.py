"""
Prompt templates for drafting and grading board-style questions.

Each template renders (topic, context, difficulty, revision history) into
one prompt that asks for the labelled-section format the structured-text
parser reads.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from mcqgen.models import DraftQuestion, IterationRecord, ResearchContext

RESPONSE_FORMAT = """PROVIDE YOUR RESPONSE IN THIS EXACT STRUCTURED FORMAT (plain text, no markdown):

CLINICAL_VIGNETTE:
A [AGE]-year-old [SEX] presents with a [DURATION] history of [SYMPTOMS]. Physical examination reveals [FINDINGS]. [RELEVANT HISTORY OR TEST RESULTS].

LEAD_IN:
What is the most likely diagnosis?

OPTION_A:
[option]

OPTION_B:
[option]

OPTION_C:
[option]

OPTION_D:
[option]

OPTION_E:
[option]

CORRECT_ANSWER:
[single letter A-E]

CORRECT_ANSWER_RATIONALE:
[why the key is correct, citing findings from the vignette]

DISTRACTOR_1_EXPLANATION:
[why the first incorrect option is wrong]

DISTRACTOR_2_EXPLANATION:
[why the second incorrect option is wrong]

DISTRACTOR_3_EXPLANATION:
[why the third incorrect option is wrong]

DISTRACTOR_4_EXPLANATION:
[why the fourth incorrect option is wrong]

EDUCATIONAL_PEARLS:
1. [clinical pearl]
2. [differential diagnosis pearl]
3. [management pearl]

QUALITY_VALIDATION:
- Covers options test: [YES/NO]
- Cognitive level: [YES/NO]
- Clinical realism: [YES/NO]
- Homogeneous options: [YES/NO]
- Difficulty appropriate: [YES/NO]"""


BOARD_STYLE_BODY = """You are a board-certified dermatologist who writes examination items for the American Board of Dermatology.

Write one Type A (one-best-answer) multiple-choice question about "{topic}".

{context_section}REQUIREMENTS:

1. Test application of knowledge, not recall. Present findings and ask the examinee to reason to the diagnosis or management (bottom-up).
2. Target difficulty: {difficulty_label} ({difficulty:.2f} on a 0-1 scale).
3. The vignette must include age, sex, presenting complaint with duration, examination findings, and any relevant history or test results. An informed examinee must be able to answer with the options covered.
4. The lead-in is a single direct question using "most likely", "best", or "most appropriate". No negative phrasing (EXCEPT, NOT, LEAST).
5. Exactly five options: one key and four plausible distractors, all from the same category, grammatically parallel and of similar length.
6. Explain why the key is correct and why each distractor is wrong, then give three educational pearls.

{history_section}{response_format}"""


RAPID_BODY = """Write one one-best-answer multiple-choice question about "{topic}" for dermatology board review.

{context_section}Difficulty: {difficulty_label} ({difficulty:.2f}). Use a short clinical vignette (age, sex, duration, examination findings), a focused lead-in question, five homogeneous options of similar length, a single correct letter, and brief explanations.

{history_section}{response_format}"""


@dataclass(frozen=True)
class PromptTemplate:
    """A named drafting prompt."""

    name: str
    body: str
    context_heading: str = "CURRENT LITERATURE AND REFERENCE CONTEXT:"
    max_context_chars: int = 6000

    def render(
        self,
        topic: str,
        context: ResearchContext,
        difficulty: float,
        difficulty_label: str,
        history: Sequence[IterationRecord] = (),
    ) -> str:
        context_section = ""
        if not context.is_empty:
            block = context.to_prompt_block(self.max_context_chars)
            context_section = f"{self.context_heading}\n{block}\n\n"

        history_section = ""
        if history:
            history_section = render_history(history) + "\n\n"

        return self.body.format(
            topic=topic,
            difficulty=difficulty,
            difficulty_label=difficulty_label,
            context_section=context_section,
            history_section=history_section,
            response_format=RESPONSE_FORMAT,
        )


BOARD_STYLE_TEMPLATE = PromptTemplate(name="board_style", body=BOARD_STYLE_BODY)
RAPID_TEMPLATE = PromptTemplate(name="rapid", body=RAPID_BODY, max_context_chars=2500)


def render_history(history: Sequence[IterationRecord]) -> str:
    """Summarize earlier attempts so the model can see what failed."""
    lines = ["PREVIOUS ATTEMPTS FAILED REVIEW. Write a new question that fixes these problems:"]
    for record in history:
        if not record.validation.is_valid:
            problems = "; ".join(record.validation.errors) or "no usable sections"
            lines.append(
                f"- Attempt {record.index}: structurally invalid "
                f"(structure score {record.validation.score}/100). Problems: {problems}"
            )
            continue
        weakest = record.rubric.weakest_dimension
        weak_score = record.rubric.dimensions.get(weakest, 0) if weakest else 0
        lines.append(
            f"- Attempt {record.index}: rubric {record.rubric.total}/25, below the "
            f"{record.rubric.threshold} needed. Weakest area: {weakest} ({weak_score}/5)"
        )
        if record.validation.warnings:
            lines.append(f"  Warnings: {'; '.join(record.validation.warnings)}")
    return "\n".join(lines)


SCORING_BODY = """You are an item-writing reviewer for dermatology board examinations. Grade the question below on each dimension from 1 (poor) to 5 (excellent).

- clinical_detail: age, sex, presentation, timeline, examination findings and relevant history in the vignette
- option_homogeneity: all five options belong to one category and are similar in length and form
- explanation_completeness: the rationale explains why the key is correct using findings from the vignette
- distractor_coverage: every incorrect option has a specific explanation, plus useful teaching pearls
- lead_in_quality: a focused, positively phrased question answerable from the vignette alone

{context_section}QUESTION:
{question}

OUTPUT JSON EXACTLY:
{{
  "rubric": {{
    "clinical_detail": 3,
    "option_homogeneity": 3,
    "explanation_completeness": 3,
    "distractor_coverage": 3,
    "lead_in_quality": 3
  }},
  "feedback": ["actionable #1", "actionable #2"]
}}"""


def render_scoring_prompt(
    draft: DraftQuestion,
    context: ResearchContext,
    max_context_chars: int = 2500,
) -> str:
    """Render a draft into the JSON grading prompt."""
    letters = "ABCDE"
    lines = [f"Vignette: {draft.stem}", f"Lead-in: {draft.lead_in}"]
    for letter, option in zip(letters, draft.options):
        lines.append(f"{letter}. {option.text}")
    correct = draft.correct_option
    if correct is not None:
        lines.append(f"Correct answer: {letters[draft.correct_index]}")
    if draft.explanation:
        lines.append(f"Explanation:\n{draft.explanation}")

    context_section = ""
    if not context.is_empty:
        context_section = f"REFERENCE MATERIAL:\n{context.to_prompt_block(max_context_chars)}\n\n"

    return SCORING_BODY.format(context_section=context_section, question="\n".join(lines))
