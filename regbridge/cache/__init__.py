"""Conditional upstream cache and its stores."""

from regbridge.cache.conditional import (
    CacheEntry,
    CacheResult,
    ConditionalCache,
    Failed,
    Fresh,
    Miss,
    Stale,
    cache_key,
)
from regbridge.cache.store import CacheStore, FileStore, MemoryStore, open_store

__all__ = [
    "CacheEntry",
    "CacheResult",
    "CacheStore",
    "ConditionalCache",
    "Failed",
    "FileStore",
    "Fresh",
    "MemoryStore",
    "Miss",
    "Stale",
    "cache_key",
    "open_store",
]
