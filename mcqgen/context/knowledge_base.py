"""
Knowledge-base store.

A read-only topic -> entry map loaded from a JSON file (or handed in
directly) with an explicit open()/close() lifecycle. The store is passed
to the context provider that needs it; there is no module-level copy.

File format:

    {
      "acne vulgaris": {
        "title": "Acne vulgaris",
        "summary": "Chronic inflammatory disease of the pilosebaceous unit...",
        "key_points": ["Comedones are the primary lesion", "..."]
      },
      "rosacea": "A plain string is read as the summary."
    }
"""
from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from mcqgen.errors import KnowledgeBaseError

TOKEN_RE = re.compile(r"[a-z0-9]+")
STOPWORDS = frozenset({"a", "an", "and", "the", "of", "in", "on", "for", "with", "to", "or"})


def _tokens(text: str) -> set[str]:
    return {token for token in TOKEN_RE.findall(text.lower()) if token not in STOPWORDS}


@dataclass(frozen=True)
class KnowledgeEntry:
    """One knowledge-base article."""

    key: str
    title: str
    summary: str
    key_points: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, key: str, raw: Any) -> KnowledgeEntry:
        if isinstance(raw, str):
            return cls(key=key, title=key, summary=raw)
        if not isinstance(raw, Mapping):
            raise KnowledgeBaseError(f"Entry {key!r} must be an object or a string")
        return cls(
            key=key,
            title=str(raw.get("title") or key),
            summary=str(raw.get("summary") or ""),
            key_points=tuple(str(point) for point in raw.get("key_points") or ()),
        )

    def to_snippet(self) -> str:
        lines = [f"Title: {self.title}"]
        if self.summary:
            lines.append(f"Summary: {self.summary}")
        if self.key_points:
            lines.append("Key points:")
            lines.extend(f"- {point}" for point in self.key_points)
        return "\n".join(lines)


class KnowledgeBaseStore:
    """
    Topic lookup over a knowledge-base file.

    Usage:
        store = KnowledgeBaseStore("kb.json").open()
        entries = store.lookup("acne vulgaris")
        store.close()

    or as a context manager:
        with KnowledgeBaseStore("kb.json") as store:
            ...
    """

    def __init__(
        self,
        path: str | Path | None = None,
        entries: Mapping[str, Any] | None = None,
    ):
        if path is None and entries is None:
            raise KnowledgeBaseError("KnowledgeBaseStore needs a path or an entries mapping")
        self.path = Path(path) if path is not None else None
        self._initial = entries
        self._entries: dict[str, KnowledgeEntry] | None = None

    @property
    def is_open(self) -> bool:
        return self._entries is not None

    def __len__(self) -> int:
        return len(self._entries or {})

    def open(self) -> KnowledgeBaseStore:
        """Load entries. Calling open() on an open store is a no-op."""
        if self._entries is not None:
            return self

        raw = self._initial if self._initial is not None else self._read_file()
        self._entries = {
            key.strip().lower(): KnowledgeEntry.from_raw(key, value) for key, value in raw.items()
        }
        logger.debug(f"Knowledge base opened with {len(self._entries)} entries")
        return self

    def close(self) -> None:
        """Release loaded entries."""
        self._entries = None

    def _read_file(self) -> Mapping[str, Any]:
        assert self.path is not None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise KnowledgeBaseError(f"Cannot read knowledge base {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise KnowledgeBaseError(f"Knowledge base {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise KnowledgeBaseError(f"Knowledge base {self.path} must contain a JSON object")
        return data

    def get(self, key: str) -> KnowledgeEntry | None:
        return self._require_open().get(key.strip().lower())

    def lookup(self, topic: str, limit: int = 3) -> list[KnowledgeEntry]:
        """
        Rank entries by token overlap with the topic.

        Args:
            topic: Free-text topic
            limit: Maximum number of entries returned

        Returns:
            Best matches first; an exact key match always ranks first
        """
        entries = self._require_open()
        wanted = _tokens(topic)
        exact_key = topic.strip().lower()

        scored: list[tuple[int, str, KnowledgeEntry]] = []
        for key, entry in entries.items():
            if key == exact_key:
                score = 1000
            else:
                heading = _tokens(f"{key} {entry.title}")
                body = _tokens(entry.summary)
                score = 2 * len(wanted & heading) + len(wanted & body)
            if score > 0:
                scored.append((score, key, entry))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [entry for _, _, entry in scored[:limit]]

    def _require_open(self) -> dict[str, KnowledgeEntry]:
        if self._entries is None:
            raise KnowledgeBaseError("Knowledge base is not open; call open() first")
        return self._entries

    def __enter__(self) -> KnowledgeBaseStore:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> KnowledgeBaseStore:
        return self.open()

    async def __aexit__(self, *exc_info) -> None:
        self.close()
