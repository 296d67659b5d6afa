"""
Context providers.

A provider turns a topic into a ResearchContext and never raises: every
source is fetched independently with its own timeout, and a failed source
becomes a SourceContext carrying an error marker instead of snippets.
Drafting proceeds with whatever came back.

Providers:
- LiteratureContextProvider: PubMed (NCBI E-utilities) and OpenAlex, in parallel
- KnowledgeBaseContextProvider: entries from an injected KnowledgeBaseStore
- CompositeContextProvider: several providers fanned out in parallel
- NullContextProvider: no context at all
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from loguru import logger

from mcqgen.context.knowledge_base import KnowledgeBaseStore
from mcqgen.errors import KnowledgeBaseError
from mcqgen.models import ContextSource, ResearchContext, SourceContext

if TYPE_CHECKING:
    from config import Settings

ABSTRACT_MAX_CHARS = 500


class ContextProvider(Protocol):
    """Supplies domain context for a topic. Must not raise."""

    async def fetch_context(self, topic: str) -> ResearchContext: ...


def reconstruct_abstract(inverted_index: dict[str, list[int]] | None, max_chars: int = ABSTRACT_MAX_CHARS) -> str:
    """Rebuild an OpenAlex abstract from its word -> positions index."""
    if not inverted_index:
        return ""
    positioned = [
        (position, word) for word, positions in inverted_index.items() for position in positions
    ]
    text = " ".join(word for _, word in sorted(positioned))
    if len(text) > max_chars:
        text = text[:max_chars].rstrip() + "..."
    return text


async def fetch_source(
    source: ContextSource,
    fetch: Callable[[], Awaitable[list[str]]],
    timeout_s: float,
) -> SourceContext:
    """Run one source fetch under its own timeout, converting failures to markers."""
    started = time.monotonic()
    error: str | None = None
    snippets: list[str] = []
    try:
        snippets = await asyncio.wait_for(fetch(), timeout=timeout_s)
    except asyncio.TimeoutError:
        error = f"timed out after {timeout_s:g}s"
    except Exception as e:
        error = f"{type(e).__name__}: {e}"

    duration_ms = int((time.monotonic() - started) * 1000)
    if error:
        logger.warning(f"Context source {source.value} failed after {duration_ms}ms: {error}")
    else:
        logger.debug(f"Context source {source.value} returned {len(snippets)} snippets in {duration_ms}ms")
    return SourceContext(
        source=source,
        snippets=tuple(snippets),
        fetch_duration_ms=duration_ms,
        error=error,
    )


class NullContextProvider:
    """Provider for variants that draft without external context."""

    async def fetch_context(self, topic: str) -> ResearchContext:
        return ResearchContext.empty()


class LiteratureContextProvider:
    """
    PubMed and OpenAlex lookups run in parallel.

    PubMed: esearch for PMIDs matching the topic in title/abstract, then
    esummary for titles and journals. OpenAlex: relevance-sorted works
    that have an abstract, with the abstract rebuilt from the inverted index.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_ms: int = 15_000,
        results_per_source: int = 3,
        ncbi_base_url: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils",
        ncbi_tool: str = "mcqgen",
        ncbi_email: str = "mcqgen@example.org",
        openalex_base_url: str = "https://api.openalex.org",
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_ms / 1000),
            follow_redirects=True,
        )
        self.timeout_ms = timeout_ms
        self.results_per_source = results_per_source
        self.ncbi_base_url = ncbi_base_url.rstrip("/")
        self.ncbi_tool = ncbi_tool
        self.ncbi_email = ncbi_email
        self.openalex_base_url = openalex_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> LiteratureContextProvider:
        return cls(
            timeout_ms=settings.context_fetch_timeout_ms,
            results_per_source=settings.context_results_per_source,
            ncbi_base_url=settings.ncbi_base_url,
            ncbi_tool=settings.ncbi_tool,
            ncbi_email=settings.ncbi_email,
            openalex_base_url=settings.openalex_base_url,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch_context(self, topic: str) -> ResearchContext:
        timeout_s = self.timeout_ms / 1000
        results = await asyncio.gather(
            fetch_source(ContextSource.NCBI, lambda: self._search_pubmed(topic), timeout_s),
            fetch_source(ContextSource.OPENALEX, lambda: self._search_openalex(topic), timeout_s),
        )
        return ResearchContext(sources=tuple(results))

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def _search_pubmed(self, topic: str) -> list[str]:
        common = {"tool": self.ncbi_tool, "email": self.ncbi_email, "retmode": "json"}
        search = await self._get_json(
            f"{self.ncbi_base_url}/esearch.fcgi",
            {
                "db": "pubmed",
                "term": f"{topic}[Title/Abstract]",
                "retmax": self.results_per_source,
                "sort": "relevance",
                **common,
            },
        )
        ids: list[str] = search.get("esearchresult", {}).get("idlist", [])
        if not ids:
            return []

        summary = await self._get_json(
            f"{self.ncbi_base_url}/esummary.fcgi",
            {"db": "pubmed", "id": ",".join(ids), **common},
        )
        result = summary.get("result", {})

        snippets = []
        for pmid in ids:
            article = result.get(pmid) or {}
            title = article.get("title")
            if not title:
                continue
            journal = article.get("fulljournalname") or article.get("source") or "Unknown journal"
            pubdate = article.get("pubdate", "")
            snippets.append(f"Title: {title}\nJournal: {journal} ({pubdate})\nPMID: {pmid}")
        return snippets

    async def _search_openalex(self, topic: str) -> list[str]:
        data = await self._get_json(
            f"{self.openalex_base_url}/works",
            {
                "search": topic,
                "per-page": self.results_per_source,
                "sort": "relevance_score:desc",
                "filter": "has_abstract:true",
            },
        )
        snippets = []
        for work in data.get("results", []):
            title = work.get("display_name") or work.get("title")
            abstract = reconstruct_abstract(work.get("abstract_inverted_index"))
            if title and abstract:
                snippets.append(f"Title: {title}\nAbstract: {abstract}")
        return snippets


class KnowledgeBaseContextProvider:
    """Adapts a KnowledgeBaseStore to the provider interface."""

    def __init__(self, store: KnowledgeBaseStore, limit: int = 3):
        self.store = store
        self.limit = limit

    async def fetch_context(self, topic: str) -> ResearchContext:
        started = time.monotonic()
        try:
            entries = self.store.lookup(topic, limit=self.limit)
        except KnowledgeBaseError as e:
            logger.warning(f"Knowledge base lookup failed for {topic!r}: {e}")
            return ResearchContext(
                sources=(SourceContext(source=ContextSource.KNOWLEDGE_BASE, error=str(e)),)
            )
        return ResearchContext(
            sources=(
                SourceContext(
                    source=ContextSource.KNOWLEDGE_BASE,
                    snippets=tuple(entry.to_snippet() for entry in entries),
                    fetch_duration_ms=int((time.monotonic() - started) * 1000),
                ),
            )
        )


class CompositeContextProvider:
    """Runs several providers in parallel and concatenates their sources in order."""

    def __init__(self, providers: Sequence[ContextProvider]):
        self.providers = list(providers)

    async def fetch_context(self, topic: str) -> ResearchContext:
        contexts = await asyncio.gather(
            *(provider.fetch_context(topic) for provider in self.providers)
        )
        return ResearchContext(
            sources=tuple(source for context in contexts for source in context.sources)
        )
