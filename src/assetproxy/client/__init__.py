"""Upstream client for assetproxy.

Provides :class:`ResilientFetcher`, an async wrapper around
:class:`httpx.AsyncClient` that retries network failures, read failures,
and rate limiting with jittered exponential backoff, and returns a
:class:`FetchOutcome` instead of a raw response.

Modules:
    fetcher: The retry state machine.
    policy: :class:`RetryPolicy` and the backoff schedule.
    ratelimit: The rate-limit classification heuristic.
    response: :class:`FetchOutcome` and best-effort body parsing.
"""

from assetproxy.client.fetcher import RequestOptions, ResilientFetcher
from assetproxy.client.policy import RetryPolicy, backoff
from assetproxy.client.ratelimit import is_rate_limited
from assetproxy.client.response import FetchOutcome, parse_body

__all__ = [
    "FetchOutcome",
    "RequestOptions",
    "ResilientFetcher",
    "RetryPolicy",
    "backoff",
    "is_rate_limited",
    "parse_body",
]
