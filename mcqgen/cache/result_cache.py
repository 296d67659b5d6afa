"""
Result cache for pipeline output.

Keys are SHA-256 digests of (normalized topic, difficulty bucket, variant).
Entries are value-typed: put() stores a deep copy and get() returns a deep
copy, so editing a retrieved result never touches the cached one.

InMemoryResultCache is the default store. Any object implementing the
ResultCache protocol (a document store, Redis, ...) can replace it.
"""
from __future__ import annotations

import asyncio
import copy
import hashlib
import math
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from mcqgen.models import GenerationRequest, PipelineResult

if TYPE_CHECKING:
    from config import Settings


def normalize_topic(topic: str) -> str:
    return " ".join(topic.lower().split())


def difficulty_bucket(difficulty: float, bucket_size: float = 0.1) -> int:
    """Index of the bucket nearest to the difficulty (0.1 buckets: 0.34 -> 3)."""
    return math.floor(difficulty / bucket_size + 0.5)


def make_cache_key(request: GenerationRequest, bucket_size: float = 0.1) -> str:
    """Deterministic cache key for a request."""
    material = "|".join(
        (
            normalize_topic(request.topic),
            str(difficulty_bucket(request.difficulty, bucket_size)),
            request.variant.value,
        )
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ResultCache(Protocol):
    """Key-value contract the pipeline needs from a cache."""

    async def get(self, key: str) -> PipelineResult | None: ...

    async def put(self, key: str, result: PipelineResult) -> None: ...

    async def invalidate(self, key: str) -> bool: ...


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


@dataclass
class _CacheEntry:
    result: PipelineResult
    stored_at: float


class InMemoryResultCache:
    """
    LRU cache with optional TTL.

    Usage:
        cache = InMemoryResultCache(max_entries=1000)
        key = make_cache_key(request)
        await cache.put(key, result)
        cached = await cache.get(key)
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float | None = None,
        bucket_size: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.bucket_size = bucket_size
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> InMemoryResultCache:
        return cls(
            max_entries=settings.cache_max_entries,
            ttl_seconds=settings.cache_ttl_seconds,
            bucket_size=settings.difficulty_bucket_size,
        )

    def key_for(self, request: GenerationRequest) -> str:
        return make_cache_key(request, self.bucket_size)

    async def get(self, key: str) -> PipelineResult | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry):
                del self._entries[key]
                entry = None
            if entry is None:
                self._stats.misses += 1
                logger.debug(f"Cache miss {key[:12]}")
                return None
            self._entries.move_to_end(key)
            self._stats.hits += 1
            logger.debug(f"Cache hit {key[:12]}")
            return copy.deepcopy(entry.result)

    async def put(self, key: str, result: PipelineResult) -> None:
        async with self._lock:
            self._entries[key] = _CacheEntry(result=copy.deepcopy(result), stored_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug(f"Cache evicted {evicted[:12]}")

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def invalidate_request(self, request: GenerationRequest) -> bool:
        return await self.invalidate(self.key_for(request))

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            size=len(self._entries),
        )

    def _expired(self, entry: _CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.stored_at > self.ttl_seconds
