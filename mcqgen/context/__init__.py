"""Research context for drafting prompts.

Usage:
    from mcqgen.context import LiteratureContextProvider

    provider = LiteratureContextProvider(timeout_ms=15_000)
    context = await provider.fetch_context("Acne vulgaris")
    for source in context.sources:
        print(source.source.value, len(source.snippets), source.error)
"""
from mcqgen.context.knowledge_base import KnowledgeBaseStore, KnowledgeEntry
from mcqgen.context.providers import (
    CompositeContextProvider,
    ContextProvider,
    KnowledgeBaseContextProvider,
    LiteratureContextProvider,
    NullContextProvider,
)

__all__ = [
    "CompositeContextProvider",
    "ContextProvider",
    "KnowledgeBaseContextProvider",
    "KnowledgeBaseStore",
    "KnowledgeEntry",
    "LiteratureContextProvider",
    "NullContextProvider",
]
