"""In-memory entry store with per-entry TTL expiry.

:class:`EntryStore` is the process-lifetime mapping from identifier to
:class:`~assetproxy.cache.entries.CacheEntry`. It is created once (by the
server lifespan or a CLI command) and injected into
:class:`~assetproxy.cache.lookup.LookupCache`; nothing reaches it as ambient
module state.

Entries live in a :class:`cachetools.TLRUCache` whose time-to-use is each
entry's own ``expires_at``, so resolved items and rate-limited placeholders
can carry different lifetimes in the same store. Expired entries are
dropped by cachetools as new ones are written; when ``max_entries`` is
reached the least recently used entry is evicted first.

The store is volatile and vanishes on restart.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from cachetools import TLRUCache

from assetproxy.cache.entries import CacheEntry, EntryValue, is_fresh
from assetproxy.models import CacheConfig


def _entry_expiry(identifier: str, entry: CacheEntry, now: float) -> float:
    return entry.expires_at


class EntryStore:
    """Identifier-keyed TTL store.

    Args:
        clock: Monotonic clock. Expiry times are readings of this clock.
        max_entries: Capacity before entries are evicted.

    Example::

        store = EntryStore()
        store.set("1818", {"targetId": 1818, "state": "Completed"}, ttl=1800)
        entry = store.get("1818")
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 100_000,
    ) -> None:
        self._clock = clock
        self._entries: TLRUCache[str, CacheEntry] = TLRUCache(
            maxsize=max_entries, ttu=_entry_expiry, timer=clock,
        )

    @classmethod
    def from_config(cls, config: CacheConfig) -> EntryStore:
        return cls(max_entries=config.max_entries)

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    def now(self) -> float:
        """Current reading of the store's clock."""
        return self._clock()

    def get(self, identifier: str) -> Optional[CacheEntry]:
        """Return the fresh entry for *identifier*, or ``None`` on a miss."""
        entry = self._entries.get(identifier)
        if entry is None or not is_fresh(entry, self.now()):
            return None
        return entry

    def set(self, identifier: str, value: EntryValue, ttl: float) -> CacheEntry:
        """Store *value* for *identifier*, expiring *ttl* seconds from now.

        An entry that is already expired when written is not kept, and any
        older entry for *identifier* is dropped with it.
        """
        entry = CacheEntry(id=identifier, value=value, expires_at=self.now() + ttl)
        if is_fresh(entry, self.now()):
            self._entries[identifier] = entry
        else:
            self._entries.pop(identifier, None)
        return entry

    def invalidate(self, identifier: str) -> None:
        """Drop the entry for *identifier* if present."""
        self._entries.pop(identifier, None)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and self.get(identifier) is not None

    def stats(self) -> dict[str, Any]:
        """Return ``size``, ``placeholders`` and ``max_entries`` for fresh entries."""
        self._entries.expire()
        return {
            "size": len(self._entries),
            "placeholders": sum(1 for e in self._entries.values() if e.is_placeholder),
            "max_entries": self.max_entries,
        }
