"""Structured-text parsing of model responses."""
from mcqgen.parsing.structured_text import ParsedDraft, StructuredTextParser, parse_structured_text

__all__ = ["ParsedDraft", "StructuredTextParser", "parse_structured_text"]
