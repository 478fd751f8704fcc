"""Batching lookup cache in front of the upstream thumbnail service.

:class:`LookupCache` answers batch requests for identifiers. Fresh entries
in the :class:`~assetproxy.cache.store.EntryStore` are served directly; all
remaining misses are fetched together in **one** upstream call through the
:class:`~assetproxy.client.fetcher.ResilientFetcher` (split into sub-batches
of at most ``max_batch_size`` identifiers for very large requests), merged
back into the caller's order, and stored for the next caller.

Every identifier that was a miss ends up in the store: either as the
upstream item, or as an :class:`~assetproxy.cache.entries.ErrorPlaceholder`
when the upstream response left it out. Placeholders are cached too, so a
persistently failing identifier does not hammer the upstream on every
request. Placeholders that came out of a rate-limited response get the
shorter ``rate_limited_ttl_seconds`` lifetime, since the identifier may well
resolve once the upstream recovers.

Concurrent callers that miss on the same identifier share one in-flight
upstream call: the first caller starts a batch task and registers each of
its identifiers in the in-flight map; later callers await that task instead
of fetching again.

If the upstream call fails fatally, the whole :meth:`LookupCache.resolve`
call fails, nothing from that batch is stored, and every caller waiting on
the batch sees the same error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any, Optional

from assetproxy.cache.entries import EntryValue, ErrorPlaceholder
from assetproxy.cache.store import EntryStore
from assetproxy.client.fetcher import RequestOptions, ResilientFetcher
from assetproxy.client.policy import RetryPolicy
from assetproxy.client.response import FetchOutcome
from assetproxy.exceptions import InvalidRequestError
from assetproxy.models import CacheConfig, ProxyConfig, UpstreamConfig

logger = logging.getLogger(__name__)

IDENTIFIER_FIELDS = ("targetId", "assetId", "id")
"""Item fields that may carry the identifier, tried in order."""


def parse_identifiers(raw: str) -> list[str]:
    """Split a comma-separated request value into identifier tokens.

    Whitespace around tokens is stripped and empty tokens are dropped;
    duplicates are kept (see :func:`dedupe_identifiers`).
    """
    return [token.strip() for token in raw.split(",") if token.strip()]


def dedupe_identifiers(ids: Iterable[Any]) -> list[str]:
    """Normalise identifiers to strings, dropping blanks and later duplicates."""
    seen: set[str] = set()
    ordered: list[str] = []
    for raw in ids:
        ident = str(raw).strip()
        if ident and ident not in seen:
            seen.add(ident)
            ordered.append(ident)
    return ordered


def item_identifier(item: Any) -> Optional[str]:
    """Return the identifier an upstream item describes, or ``None``.

    The upstream is inconsistent about which field carries it, so
    :data:`IDENTIFIER_FIELDS` are tried in order.
    """
    if not isinstance(item, dict):
        return None
    for name in IDENTIFIER_FIELDS:
        value = item.get(name)
        if value is not None and value != "":
            return str(value)
    return None


def _response_items(outcome: FetchOutcome) -> list[Any]:
    body = outcome.parsed_body
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        return body["data"]
    return []


class _PendingBatch:
    """An upstream batch call in flight, shared by every caller that needs it."""

    def __init__(self, ids: list[str]) -> None:
        self.ids = ids
        self.fingerprint = ",".join(sorted(ids))
        self.task: Optional[asyncio.Task[dict[str, EntryValue]]] = None


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # Marks a failure as retrieved when every caller awaiting it was cancelled.
    if not task.cancelled():
        task.exception()


class LookupCache:
    """TTL cache with miss batching and in-flight coalescing.

    Args:
        fetcher: Entered :class:`~assetproxy.client.fetcher.ResilientFetcher`.
        store: The process-wide :class:`~assetproxy.cache.store.EntryStore`.
        upstream: Upstream endpoint settings.
        cache_config: TTLs and the batch size limit.
        policy: Retry policy for batched calls.
        headers: Pre-built headers sent with every batch call.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        store: EntryStore,
        upstream: Optional[UpstreamConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        policy: Optional[RetryPolicy] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._upstream = upstream or UpstreamConfig()
        self._config = cache_config or CacheConfig()
        self._policy = policy or RetryPolicy(name="thumbnails", max_retries=5)
        self._headers = dict(headers or {})
        self._inflight: dict[str, _PendingBatch] = {}
        self._hits = 0
        self._misses = 0
        self._upstream_calls = 0

    @classmethod
    def from_config(
        cls,
        fetcher: ResilientFetcher,
        store: EntryStore,
        config: ProxyConfig,
    ) -> LookupCache:
        """Build a cache whose policy uses ``retry.batch_max_retries``."""
        policy = RetryPolicy.from_config(
            "thumbnails", config.retry, config.retry.batch_max_retries,
        )
        return cls(fetcher, store, config.upstream, config.cache, policy)

    @property
    def store(self) -> EntryStore:
        return self._store

    async def resolve(self, ids: Iterable[Any]) -> list[tuple[str, EntryValue]]:
        """Resolve a batch of identifiers in first-occurrence order.

        Args:
            ids: Identifiers, possibly with duplicates.

        Returns:
            ``(identifier, value)`` pairs, one per distinct identifier, where
            *value* is the upstream item or an
            :class:`~assetproxy.cache.entries.ErrorPlaceholder`.

        Raises:
            InvalidRequestError: No identifiers were given.
            NetworkError: The batched upstream call failed fatally.
            ReadError: The batched upstream response was unreadable.
        """
        ordered = dedupe_identifiers(ids)
        if not ordered:
            raise InvalidRequestError("No identifiers given")

        values: dict[str, EntryValue] = {}
        misses: list[str] = []
        for ident in ordered:
            entry = self._store.get(ident)
            if entry is None:
                misses.append(ident)
            else:
                values[ident] = entry.value
        self._hits += len(values)
        self._misses += len(misses)

        if misses:
            values.update(await self._resolve_misses(misses))

        return [(ident, values[ident]) for ident in ordered]

    async def _resolve_misses(self, misses: list[str]) -> dict[str, EntryValue]:
        """Fetch *misses*, joining batches already in flight where possible."""
        batches: dict[int, _PendingBatch] = {}
        wanted: dict[int, list[str]] = {}
        new_ids: list[str] = []
        for ident in misses:
            pending = self._inflight.get(ident)
            if pending is None:
                new_ids.append(ident)
                continue
            if id(pending) not in batches:
                logger.debug("Joining in-flight batch %s", pending.fingerprint)
            batches[id(pending)] = pending
            wanted.setdefault(id(pending), []).append(ident)

        size = self._config.max_batch_size
        for start in range(0, len(new_ids), size):
            chunk = new_ids[start:start + size]
            pending = self._start_batch(chunk)
            batches[id(pending)] = pending
            wanted[id(pending)] = chunk

        resolved: dict[str, EntryValue] = {}
        for key, pending in batches.items():
            assert pending.task is not None
            batch_values = await asyncio.shield(pending.task)
            for ident in wanted[key]:
                resolved[ident] = batch_values[ident]
        return resolved

    def _start_batch(self, ids: list[str]) -> _PendingBatch:
        pending = _PendingBatch(ids)
        pending.task = asyncio.ensure_future(self._fetch_batch(pending))
        pending.task.add_done_callback(_retrieve_exception)
        for ident in ids:
            self._inflight[ident] = pending
        return pending

    async def _fetch_batch(self, pending: _PendingBatch) -> dict[str, EntryValue]:
        """Issue the single upstream call for *pending* and store its results."""
        try:
            self._upstream_calls += 1
            outcome = await self._fetcher.fetch(
                self._upstream.thumbnail_url,
                RequestOptions(
                    params={
                        "assetIds": ",".join(pending.ids),
                        "size": self._upstream.thumbnail_size,
                        "format": self._upstream.thumbnail_format,
                    },
                    headers=self._headers,
                ),
                self._policy,
            )
            return self._store_outcome(pending.ids, outcome)
        finally:
            for ident in pending.ids:
                if self._inflight.get(ident) is pending:
                    del self._inflight[ident]

    def _store_outcome(self, ids: list[str], outcome: FetchOutcome) -> dict[str, EntryValue]:
        """Match response items to *ids* and store every one of them."""
        index: dict[str, Any] = {}
        for item in _response_items(outcome):
            key = item_identifier(item)
            if key is not None and key not in index:
                index[key] = item

        values: dict[str, EntryValue] = {}
        missing = 0
        for ident in ids:
            item = index.get(ident)
            if item is not None:
                value: EntryValue = item
                ttl = self._config.ttl_seconds
            else:
                missing += 1
                value = ErrorPlaceholder(id=ident, rate_limited=outcome.rate_limited)
                ttl = (
                    self._config.rate_limited_ttl_seconds
                    if outcome.rate_limited
                    else self._config.ttl_seconds
                )
            self._store.set(ident, value, ttl)
            values[ident] = value

        if missing:
            logger.info(
                "Upstream left %d of %d identifiers unresolved (HTTP %d%s)",
                missing,
                len(ids),
                outcome.status_code,
                ", rate limited" if outcome.rate_limited else "",
            )
        return values

    def stats(self) -> dict[str, Any]:
        """Return store counts plus hit/miss/upstream-call counters."""
        return {
            **self._store.stats(),
            "hits": self._hits,
            "misses": self._misses,
            "upstream_calls": self._upstream_calls,
            "in_flight": len({id(p) for p in self._inflight.values()}),
        }

    def clear(self) -> None:
        """Drop every stored entry. Batches in flight still store their results."""
        self._store.clear()
