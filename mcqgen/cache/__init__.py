"""Pipeline result cache."""
from mcqgen.cache.result_cache import InMemoryResultCache, ResultCache, make_cache_key

__all__ = ["InMemoryResultCache", "ResultCache", "make_cache_key"]
