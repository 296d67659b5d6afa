"""
Structured-text parser for drafted questions.

The drafting prompt asks the model for a fixed set of labelled sections:

    CLINICAL_VIGNETTE:
    LEAD_IN:
    OPTION_A: ... OPTION_E:
    CORRECT_ANSWER:
    CORRECT_ANSWER_RATIONALE:
    DISTRACTOR_1_EXPLANATION: ... DISTRACTOR_4_EXPLANATION:
    EDUCATIONAL_PEARLS:
    QUALITY_VALIDATION:

The older "=== STEM ===" dialect (STEM / LEAD_IN / OPTIONS / CORRECT_ANSWER /
EXPLANATION headers with an "A) ..." options block) is accepted as well.

Parsing is a single linear scan: one compiled alternation of every known
marker is run over the text, and each section's body runs from its marker
to the next known marker (or end of text). Markers are matched
case-insensitively at the start of a line, optionally wrapped in markdown
bold or heading syntax.

parse() never raises. A missing section yields an empty string, and an
unresolvable answer letter yields index 0 with ambiguous_answer=True so
the structural validator can reject the draft.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from mcqgen.models import AnswerOption, DraftQuestion

OPTION_LETTERS = "ABCDE"


@dataclass(frozen=True)
class SectionMarker:
    """One named section and the marker spellings that open it."""

    name: str
    aliases: tuple[str, ...]


# Ordered grammar: the order here is the order the prompt asks for
SECTION_GRAMMAR: tuple[SectionMarker, ...] = (
    SectionMarker("vignette", ("CLINICAL_VIGNETTE", "VIGNETTE", "STEM")),
    SectionMarker("lead_in", ("LEAD_IN",)),
    SectionMarker("option_a", ("OPTION_A",)),
    SectionMarker("option_b", ("OPTION_B",)),
    SectionMarker("option_c", ("OPTION_C",)),
    SectionMarker("option_d", ("OPTION_D",)),
    SectionMarker("option_e", ("OPTION_E",)),
    SectionMarker("options", ("ANSWER_OPTIONS", "OPTIONS")),
    SectionMarker("correct_answer", ("CORRECT_ANSWER", "ANSWER")),
    SectionMarker("correct_rationale", ("CORRECT_ANSWER_RATIONALE", "RATIONALE", "EXPLANATION")),
    SectionMarker("distractor_1", ("DISTRACTOR_1_EXPLANATION",)),
    SectionMarker("distractor_2", ("DISTRACTOR_2_EXPLANATION",)),
    SectionMarker("distractor_3", ("DISTRACTOR_3_EXPLANATION",)),
    SectionMarker("distractor_4", ("DISTRACTOR_4_EXPLANATION",)),
    SectionMarker("pearls", ("EDUCATIONAL_PEARLS", "CLINICAL_PEARLS", "PEARLS")),
    SectionMarker("quality_validation", ("QUALITY_VALIDATION", "VALIDATION_CHECKLIST")),
)


def _normalize_marker(marker: str) -> str:
    return re.sub(r"[\s_\-]+", "", marker).upper()


def _alias_pattern(alias: str) -> str:
    # CLINICAL_VIGNETTE also matches "Clinical Vignette" and "CLINICAL-VIGNETTE"
    return r"[ \t_\-]*".join(re.escape(part) for part in alias.split("_"))


_ALIAS_INDEX: dict[str, str] = {
    _normalize_marker(alias): section.name for section in SECTION_GRAMMAR for alias in section.aliases
}

# Longest aliases first so the alternation prefers the most specific marker
_ALL_ALIASES = sorted(
    (alias for section in SECTION_GRAMMAR for alias in section.aliases), key=len, reverse=True
)

MARKER_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*)?(?:===[ \t]*)?"
    r"(?P<marker>" + "|".join(_alias_pattern(a) for a in _ALL_ALIASES) + r")"
    r"[ \t]*(?:\*\*)?[ \t]*(?::|===)(?:[ \t]*\*\*)?",
    re.IGNORECASE | re.MULTILINE,
)

ANSWER_LETTER_RE = re.compile(r"^\s*(?:option\s*)?[(\[]?([A-Za-z])(?![A-Za-z])", re.IGNORECASE)
ANSWER_PHRASE_RE = re.compile(r"\b(?:answer|option)\s*(?:is\s*)?[(\[]?([A-E])\b", re.IGNORECASE)
OPTION_LINE_RE = re.compile(r"^[ \t]*[(\[]?([A-Ea-e])[).:\]][ \t]*(.+?)[ \t]*$", re.MULTILINE)
CHECKLIST_LINE_RE = re.compile(
    r"^[ \t]*[-*•]?[ \t]*(?P<item>[^:\n]+?)[ \t]*:[ \t]*\[?(?P<answer>yes|no)\b",
    re.IGNORECASE | re.MULTILINE,
)
BULLET_PREFIX_RE = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]*")
DECORATION_LINE_RE = re.compile(r"^[ \t]*[-=*#_]{3,}[ \t]*$", re.MULTILINE)


@dataclass
class ParsedDraft:
    """Sections recovered from one model response. Every text field is a string."""

    raw_text: str = ""
    vignette: str = ""
    lead_in: str = ""
    options: list[str] = field(default_factory=lambda: [""] * len(OPTION_LETTERS))
    correct_letter: str = ""
    correct_index: int = 0
    ambiguous_answer: bool = True
    correct_rationale: str = ""
    distractor_explanations: list[str] = field(default_factory=lambda: [""] * 4)
    pearls: list[str] = field(default_factory=list)
    quality_checklist: dict[str, bool] = field(default_factory=dict)
    found_sections: tuple[str, ...] = ()

    @property
    def present_options(self) -> list[str]:
        return [option for option in self.options if option]

    @property
    def is_complete(self) -> bool:
        """True when every section needed for a usable question was found."""
        return bool(
            self.vignette
            and self.lead_in
            and len(self.present_options) == len(OPTION_LETTERS)
            and not self.ambiguous_answer
            and self.correct_rationale
        )

    @property
    def missing_core_sections(self) -> tuple[str, ...]:
        """Core sections (vignette, options, rationale) the response left out."""
        missing = []
        if not self.vignette:
            missing.append("vignette")
        if not self.present_options:
            missing.append("options")
        if not self.correct_rationale:
            missing.append("rationale")
        return tuple(missing)

    @property
    def is_semantically_empty(self) -> bool:
        """True when the vignette, the options, or the rationale is missing."""
        return bool(self.missing_core_sections)

    @property
    def explanation(self) -> str:
        """Rationale, distractor explanations, and pearls combined for display."""
        parts: list[str] = []
        if self.correct_rationale:
            parts.append(self.correct_rationale)
        distractors = [text for text in self.distractor_explanations if text]
        if distractors:
            parts.append(
                "Why the other options are wrong:\n" + "\n".join(f"- {text}" for text in distractors)
            )
        if self.pearls:
            parts.append("Educational pearls:\n" + "\n".join(f"- {pearl}" for pearl in self.pearls))
        return "\n\n".join(parts)

    def to_draft(self) -> DraftQuestion:
        """Convert to a DraftQuestion, keeping only options that were present.

        The answer letter is re-indexed against the kept options. A letter
        that points at a missing option is treated as ambiguous.
        """
        kept = [(letter, text) for letter, text in zip(OPTION_LETTERS, self.options) if text]
        correct_index = 0
        ambiguous = self.ambiguous_answer
        if not ambiguous:
            kept_letters = [letter for letter, _ in kept]
            if self.correct_letter in kept_letters:
                correct_index = kept_letters.index(self.correct_letter)
            else:
                ambiguous = True

        return DraftQuestion(
            stem=self.vignette,
            lead_in=self.lead_in,
            options=[AnswerOption(text=text) for _, text in kept],
            correct_index=correct_index,
            explanation=self.explanation,
            raw_model_text=self.raw_text,
            ambiguous_answer=ambiguous,
            correct_rationale=self.correct_rationale,
            distractor_rationales=[text for text in self.distractor_explanations if text],
            pearls=list(self.pearls),
            quality_checklist=dict(self.quality_checklist),
        )


def _clean_body(body: str) -> str:
    body = DECORATION_LINE_RE.sub("", body)
    return body.strip().strip("*").strip()


def split_sections(text: str) -> dict[str, str]:
    """Scan text once and return {section name: body} for every marker found.

    A marker only opens a section that has no body yet. A marker for a
    section that is already filled ("Option A: ..." inside a distractor
    explanation) is kept as text of the section it appears in, so the
    first non-empty body wins and later bodies are never cut short.
    """
    sections: dict[str, str] = {}
    current: str | None = None
    body_start = 0

    for match in MARKER_RE.finditer(text):
        name = _ALIAS_INDEX.get(_normalize_marker(match.group("marker")))
        if name is None:
            continue
        body = _clean_body(text[body_start:match.start()])
        if sections.get(name) or (name == current and body):
            continue
        if current is not None:
            _store_section(sections, current, body)
        current = name
        body_start = match.end()

    if current is not None:
        _store_section(sections, current, _clean_body(text[body_start:]))
    return sections


def _store_section(sections: dict[str, str], name: str, body: str):
    if body and not sections.get(name):
        sections[name] = body
    else:
        sections.setdefault(name, body)


def resolve_answer_letter(body: str) -> tuple[str, int, bool]:
    """Map a CORRECT_ANSWER body to (letter, zero-based index, ambiguous)."""
    match = ANSWER_LETTER_RE.match(body or "") or ANSWER_PHRASE_RE.search(body or "")
    if not match:
        return "", 0, True
    letter = match.group(1).upper()
    if letter not in OPTION_LETTERS:
        return letter, 0, True
    return letter, OPTION_LETTERS.index(letter), False


def _strip_own_letter(letter: str, body: str) -> str:
    # "OPTION_B: B) Rosacea" -> "Rosacea"
    return re.sub(rf"^[(\[]?{letter}[).:\]]\s+", "", body, flags=re.IGNORECASE).strip()


def _split_bullets(body: str) -> list[str]:
    items = []
    for line in body.splitlines():
        line = BULLET_PREFIX_RE.sub("", line).strip()
        line = re.sub(r"^Key learning point:\s*", "", line, flags=re.IGNORECASE)
        if line:
            items.append(line)
    return items


class StructuredTextParser:
    """Total parser from raw model text to ParsedDraft."""

    def parse(self, raw_text: str) -> ParsedDraft:
        text = raw_text or ""
        sections = split_sections(text)

        options = [
            _strip_own_letter(letter, sections.get(f"option_{letter.lower()}", ""))
            for letter in OPTION_LETTERS
        ]
        if not any(options) and sections.get("options"):
            options = self._options_from_block(sections["options"])

        letter, index, ambiguous = resolve_answer_letter(sections.get("correct_answer", ""))

        return ParsedDraft(
            raw_text=text,
            vignette=sections.get("vignette", ""),
            lead_in=sections.get("lead_in", ""),
            options=options,
            correct_letter=letter,
            correct_index=index,
            ambiguous_answer=ambiguous,
            correct_rationale=sections.get("correct_rationale", ""),
            distractor_explanations=[sections.get(f"distractor_{n}", "") for n in range(1, 5)],
            pearls=_split_bullets(sections.get("pearls", "")),
            quality_checklist=self._checklist(sections.get("quality_validation", "")),
            found_sections=tuple(name for name, body in sections.items() if body),
        )

    @staticmethod
    def _options_from_block(block: str) -> list[str]:
        options = [""] * len(OPTION_LETTERS)
        for match in OPTION_LINE_RE.finditer(block):
            slot = OPTION_LETTERS.index(match.group(1).upper())
            if not options[slot]:
                options[slot] = match.group(2).strip()
        return options

    @staticmethod
    def _checklist(body: str) -> dict[str, bool]:
        return {
            match.group("item").strip(): match.group("answer").upper() == "YES"
            for match in CHECKLIST_LINE_RE.finditer(body)
        }


_default_parser = StructuredTextParser()


def parse_structured_text(raw_text: str) -> ParsedDraft:
    """Parse with the shared default parser."""
    return _default_parser.parse(raw_text)
