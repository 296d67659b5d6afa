"""Prompt templates and the drafting agent."""
from mcqgen.generation.drafting import DraftingAgent
from mcqgen.generation.prompts import BOARD_STYLE_TEMPLATE, RAPID_TEMPLATE, PromptTemplate

__all__ = ["BOARD_STYLE_TEMPLATE", "RAPID_TEMPLATE", "DraftingAgent", "PromptTemplate"]
