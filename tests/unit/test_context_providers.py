"""
Unit tests for context providers.
"""

import asyncio

import pytest
import pytest_asyncio
from httpx import ConnectError, Request, Response

from mcqgen.context.knowledge_base import KnowledgeBaseStore
from mcqgen.context.providers import (
    CompositeContextProvider,
    KnowledgeBaseContextProvider,
    LiteratureContextProvider,
    NullContextProvider,
    reconstruct_abstract,
)
from mcqgen.models import ContextSource, ResearchContext, SourceContext

ESEARCH = {"esearchresult": {"idlist": ["111", "222"]}}
ESUMMARY = {
    "result": {
        "uids": ["111", "222"],
        "111": {"title": "Isotretinoin outcomes in acne", "fulljournalname": "J Dermatol", "pubdate": "2023"},
        "222": {"title": "Acne in adolescents", "source": "Pediatrics", "pubdate": "2021 Mar"},
    }
}
OPENALEX = {
    "results": [
        {
            "display_name": "Pathogenesis of acne vulgaris",
            "abstract_inverted_index": {"Acne": [0], "is": [1], "common.": [2]},
        },
        {"display_name": "No abstract here", "abstract_inverted_index": None},
    ]
}


def _json(url, body):
    return Response(200, json=body, request=Request("GET", url))


@pytest_asyncio.fixture
async def provider():
    provider = LiteratureContextProvider(
        timeout_ms=1000,
        results_per_source=2,
        ncbi_base_url="https://ncbi.test/eutils",
        openalex_base_url="https://openalex.test",
    )
    yield provider
    await provider.close()


class TestReconstructAbstract:
    """Rebuilding OpenAlex abstracts."""

    def test_orders_by_position(self):
        index = {"world": [1], "Hello": [0], "again": [3], "hello": [2]}

        assert reconstruct_abstract(index) == "Hello world hello again"

    def test_truncates(self):
        index = {f"w{n}": [n] for n in range(200)}
        text = reconstruct_abstract(index, max_chars=50)

        assert len(text) <= 53
        assert text.endswith("...")

    def test_empty(self):
        assert reconstruct_abstract(None) == ""
        assert reconstruct_abstract({}) == ""


class TestLiteratureContextProvider:
    """PubMed and OpenAlex lookups."""

    @pytest.mark.asyncio
    async def test_both_sources(self, provider, monkeypatch):
        """Snippets from both sources come back in NCBI, OpenAlex order."""
        seen_params = {}

        async def mock_get(url, params=None, **kwargs):
            seen_params[url] = params
            if url.endswith("esearch.fcgi"):
                return _json(url, ESEARCH)
            if url.endswith("esummary.fcgi"):
                return _json(url, ESUMMARY)
            return _json(url, OPENALEX)

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("acne vulgaris")

        assert [source.source for source in context.sources] == [ContextSource.NCBI, ContextSource.OPENALEX]
        assert context.errors == {}
        ncbi, openalex = context.sources
        assert ncbi.snippets[0] == "Title: Isotretinoin outcomes in acne\nJournal: J Dermatol (2023)\nPMID: 111"
        assert "Journal: Pediatrics" in ncbi.snippets[1]
        assert openalex.snippets == ("Title: Pathogenesis of acne vulgaris\nAbstract: Acne is common.",)
        assert seen_params["https://ncbi.test/eutils/esearch.fcgi"]["term"] == "acne vulgaris[Title/Abstract]"
        assert seen_params["https://ncbi.test/eutils/esummary.fcgi"]["id"] == "111,222"
        assert seen_params["https://openalex.test/works"]["per-page"] == 2

    @pytest.mark.asyncio
    async def test_no_pubmed_hits(self, provider, monkeypatch):
        async def mock_get(url, params=None, **kwargs):
            if url.endswith("esearch.fcgi"):
                return _json(url, {"esearchresult": {"idlist": []}})
            if url.endswith("esummary.fcgi"):
                raise AssertionError("esummary should not be called without ids")
            return _json(url, {"results": []})

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("obscure topic")

        assert context.is_empty
        assert context.errors == {}

    @pytest.mark.asyncio
    async def test_one_source_fails(self, provider, monkeypatch):
        """A failing source becomes an error marker; the other still contributes."""
        async def mock_get(url, params=None, **kwargs):
            if "openalex" in url:
                raise ConnectError("connection refused")
            if url.endswith("esearch.fcgi"):
                return _json(url, ESEARCH)
            return _json(url, ESUMMARY)

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("acne vulgaris")

        assert len(context.snippets) == 2
        assert set(context.errors) == {"openalex"}
        assert "ConnectError" in context.errors["openalex"]

    @pytest.mark.asyncio
    async def test_http_error_status(self, provider, monkeypatch):
        async def mock_get(url, params=None, **kwargs):
            if "openalex" in url:
                return Response(503, request=Request("GET", url))
            if url.endswith("esearch.fcgi"):
                return _json(url, ESEARCH)
            return _json(url, ESUMMARY)

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("acne vulgaris")

        assert "openalex" in context.errors
        assert context.sources[0].ok

    @pytest.mark.asyncio
    async def test_source_timeout(self, provider, monkeypatch):
        """A hung source is cut off at its own timeout."""
        provider.timeout_ms = 50

        async def mock_get(url, params=None, **kwargs):
            if "ncbi" in url:
                await asyncio.sleep(5)
            return _json(url, OPENALEX)

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("acne vulgaris")

        assert context.errors["ncbi"].startswith("timed out")
        assert len(context.sources[1].snippets) == 1

    @pytest.mark.asyncio
    async def test_sources_fetched_concurrently(self, provider, monkeypatch):
        """PubMed waits on OpenAlex having started, which only works if both run at once."""
        openalex_started = asyncio.Event()

        async def mock_get(url, params=None, **kwargs):
            if "openalex" in url:
                openalex_started.set()
                return _json(url, OPENALEX)
            await openalex_started.wait()
            if url.endswith("esearch.fcgi"):
                return _json(url, ESEARCH)
            return _json(url, ESUMMARY)

        monkeypatch.setattr(provider.client, "get", mock_get)

        context = await provider.fetch_context("acne vulgaris")

        assert context.errors == {}
        assert len(context.snippets) == 3


class TestOtherProviders:
    """Null, knowledge-base, and composite providers."""

    @pytest.mark.asyncio
    async def test_null_provider(self):
        context = await NullContextProvider().fetch_context("anything")

        assert context.is_empty
        assert context.sources == ()

    @pytest.mark.asyncio
    async def test_knowledge_base_provider(self):
        store = KnowledgeBaseStore(entries={"acne vulgaris": "Disease of the pilosebaceous unit."}).open()
        context = await KnowledgeBaseContextProvider(store).fetch_context("Acne vulgaris")

        assert context.sources[0].source == ContextSource.KNOWLEDGE_BASE
        assert context.snippets == ["Title: acne vulgaris\nSummary: Disease of the pilosebaceous unit."]

    @pytest.mark.asyncio
    async def test_closed_store_is_error_marker(self):
        store = KnowledgeBaseStore(entries={"acne": "x"})
        context = await KnowledgeBaseContextProvider(store).fetch_context("acne")

        assert context.is_empty
        assert "not open" in context.errors["knowledge_base"]

    @pytest.mark.asyncio
    async def test_composite_concatenates_in_order(self):
        store = KnowledgeBaseStore(entries={"acne": "Summary."}).open()
        composite = CompositeContextProvider(
            [NullContextProvider(), KnowledgeBaseContextProvider(store), KnowledgeBaseContextProvider(store)]
        )

        context = await composite.fetch_context("acne")

        assert len(context.sources) == 2
        assert len(context.snippets) == 2

    def test_prompt_block(self):
        context = ResearchContext(
            sources=(
                SourceContext(source=ContextSource.NCBI, snippets=("one", "two")),
                SourceContext(source=ContextSource.OPENALEX, error="timed out after 1s"),
            )
        )

        assert context.to_prompt_block() == "[Source Article 1]\none\n\n[Source Article 2]\ntwo"
        assert context.to_prompt_block(max_chars=10).endswith("[...]")
