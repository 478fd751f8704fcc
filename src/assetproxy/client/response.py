"""Fetch outcomes and best-effort body parsing.

:class:`FetchOutcome` is what :class:`~assetproxy.client.fetcher.ResilientFetcher`
returns for every non-fatal fetch: a normal response, an ordinary HTTP error
status, or a rate-limited response that outlasted the retry budget. The raw
body is always kept; the parsed body is only present when the upstream sent
well-formed JSON, and callers must cope with its absence.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one logical upstream call.

    Attributes:
        status_code: HTTP status of the final attempt.
        raw_body: Response body bytes of the final attempt.
        parsed_body: JSON-decoded body, or ``None`` if the body was empty or
            not valid JSON.
        attempts: Number of attempts made (1 when the first one was final).
        rate_limited: ``True`` when the final response was classified as
            rate limiting, i.e. the retry budget ran out while throttled.
    """

    status_code: int
    raw_body: bytes
    parsed_body: Optional[Any]
    attempts: int
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        """``True`` for a 2xx response that was not classified as rate limiting."""
        return 200 <= self.status_code < 300 and not self.rate_limited

    @property
    def text(self) -> str:
        """The raw body decoded as UTF-8, with undecodable bytes replaced."""
        return self.raw_body.decode("utf-8", errors="replace")


def parse_body(raw: bytes) -> Optional[Any]:
    """Decode *raw* as JSON, returning ``None`` instead of raising.

    An empty body, invalid UTF-8, or malformed JSON all yield ``None``.
    """
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
