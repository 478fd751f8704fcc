"""Cache entries, error placeholders, and the freshness rule.

An entry is *fresh* while ``now < expires_at``. :func:`is_fresh` is the one
place that rule lives; the store's cachetools backend uses the same
``expires_at`` to drop entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

PLACEHOLDER_STATE = "Error"
PLACEHOLDER_MESSAGE = "Thumbnail not found or rate limited"


@dataclass(frozen=True)
class ErrorPlaceholder:
    """Stand-in for an identifier the upstream did not resolve.

    Attributes:
        id: The unresolved identifier.
        message: Human-readable reason.
        rate_limited: ``True`` when the identifier went missing from a
            rate-limited response rather than a normal one.
    """

    id: str
    message: str = PLACEHOLDER_MESSAGE
    rate_limited: bool = False
    state: str = PLACEHOLDER_STATE

    def to_dict(self) -> dict[str, Any]:
        """Client-facing shape, mirroring the upstream item layout."""
        return {"targetId": self.id, "state": self.state, "message": self.message}


ResolvedValue = dict[str, Any]
EntryValue = Union[ResolvedValue, ErrorPlaceholder]


@dataclass(frozen=True)
class CacheEntry:
    """One cached resolution.

    Attributes:
        id: Identifier the entry belongs to.
        value: The upstream item, passed through unmodified, or an
            :class:`ErrorPlaceholder`.
        expires_at: Clock reading at which the entry stops being fresh.
    """

    id: str
    value: EntryValue
    expires_at: float

    @property
    def is_placeholder(self) -> bool:
        return isinstance(self.value, ErrorPlaceholder)


def is_fresh(entry: CacheEntry, now: float) -> bool:
    """Return ``True`` if *entry* may be served at clock reading *now*."""
    return now < entry.expires_at


def render_value(value: EntryValue) -> dict[str, Any]:
    """Client-facing dict for a resolved item or a placeholder."""
    if isinstance(value, ErrorPlaceholder):
        return value.to_dict()
    return value
