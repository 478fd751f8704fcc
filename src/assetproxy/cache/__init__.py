"""In-memory lookup caching for assetproxy.

This package provides :class:`LookupCache`, which serves batch identifier
lookups from an :class:`EntryStore` and fetches all misses in a single
upstream call, and the entry types it stores. Entries expire after a
configurable TTL (:class:`~assetproxy.models.CacheConfig`). Nothing is
persisted across restarts.
"""

from assetproxy.cache.entries import CacheEntry, ErrorPlaceholder, is_fresh, render_value
from assetproxy.cache.lookup import LookupCache, dedupe_identifiers, parse_identifiers
from assetproxy.cache.store import EntryStore

__all__ = [
    "CacheEntry",
    "EntryStore",
    "ErrorPlaceholder",
    "LookupCache",
    "dedupe_identifiers",
    "is_fresh",
    "parse_identifiers",
    "render_value",
]
