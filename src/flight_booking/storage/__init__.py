"""Persistence and result caching."""

from .cache_store import SqliteCacheBackend
from .result_cache import MemoryCacheBackend, ResultCache
from .sqlite_store import SqliteStore

__all__ = [
    "MemoryCacheBackend",
    "ResultCache",
    "SqliteCacheBackend",
    "SqliteStore",
]
