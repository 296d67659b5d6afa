"""
Unit tests for the knowledge-base store.
"""

import json

import pytest

from mcqgen.context.knowledge_base import KnowledgeBaseStore, KnowledgeEntry
from mcqgen.errors import KnowledgeBaseError

ENTRIES = {
    "Acne vulgaris": {
        "title": "Acne vulgaris",
        "summary": "Chronic inflammatory disease of the pilosebaceous unit.",
        "key_points": ["Comedones are the primary lesion", "Retinoids are first line"],
    },
    "Rosacea": "Central facial erythema in adults, often confused with acne.",
    "Psoriasis": {"summary": "Well-demarcated plaques with silvery scale."},
}


@pytest.fixture
def kb_file(tmp_path):
    path = tmp_path / "kb.json"
    path.write_text(json.dumps(ENTRIES), encoding="utf-8")
    return path


class TestLifecycle:
    """open()/close() and context managers."""

    def test_open_from_file(self, kb_file):
        store = KnowledgeBaseStore(kb_file).open()

        assert store.is_open
        assert len(store) == 3
        store.close()
        assert not store.is_open

    def test_open_is_idempotent(self, kb_file):
        store = KnowledgeBaseStore(kb_file)

        assert store.open() is store.open()

    def test_lookup_requires_open(self, kb_file):
        store = KnowledgeBaseStore(kb_file)

        with pytest.raises(KnowledgeBaseError):
            store.lookup("acne")

    def test_context_manager(self, kb_file):
        with KnowledgeBaseStore(kb_file) as store:
            assert store.get("acne vulgaris").title == "Acne vulgaris"
        assert not store.is_open

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with KnowledgeBaseStore(entries=ENTRIES) as store:
            assert store.is_open
        assert not store.is_open

    def test_requires_source(self):
        with pytest.raises(KnowledgeBaseError):
            KnowledgeBaseStore()

    def test_missing_file(self, tmp_path):
        with pytest.raises(KnowledgeBaseError, match="Cannot read"):
            KnowledgeBaseStore(tmp_path / "missing.json").open()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(KnowledgeBaseError, match="not valid JSON"):
            KnowledgeBaseStore(path).open()

    def test_non_object_root(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(KnowledgeBaseError):
            KnowledgeBaseStore(path).open()


class TestLookup:
    """Topic ranking."""

    def test_exact_key_first(self):
        store = KnowledgeBaseStore(entries=ENTRIES).open()

        results = store.lookup("  ROSACEA ")

        assert results[0].key == "Rosacea"

    def test_overlap_ranking(self):
        store = KnowledgeBaseStore(entries=ENTRIES).open()

        results = store.lookup("acne in teenagers")

        # Heading match outranks a summary mention
        assert [entry.key for entry in results] == ["Acne vulgaris", "Rosacea"]

    def test_limit_and_no_match(self):
        store = KnowledgeBaseStore(entries=ENTRIES).open()

        assert len(store.lookup("acne", limit=1)) == 1
        assert store.lookup("cardiology") == []


class TestKnowledgeEntry:
    """Entry parsing and rendering."""

    def test_string_entry(self):
        entry = KnowledgeEntry.from_raw("rosacea", "Facial erythema.")

        assert entry.title == "rosacea"
        assert entry.to_snippet() == "Title: rosacea\nSummary: Facial erythema."

    def test_snippet_with_key_points(self):
        entry = KnowledgeEntry.from_raw("acne", ENTRIES["Acne vulgaris"])

        assert entry.to_snippet().splitlines()[-2:] == [
            "- Comedones are the primary lesion",
            "- Retinoids are first line",
        ]

    def test_bad_entry_type(self):
        with pytest.raises(KnowledgeBaseError):
            KnowledgeEntry.from_raw("x", 42)
