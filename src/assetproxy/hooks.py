"""Per-attempt diagnostic records and the hooks that observe them.

Every attempt :class:`~assetproxy.client.fetcher.ResilientFetcher` makes
produces one :class:`AttemptRecord`. Records are handed to a
:class:`HookRunner`, which fans them out to registered
:class:`AttemptHook` instances in registration order. :class:`LoggingHook`
is the default observer and writes each record through :mod:`logging`;
metrics exporters or test recorders can be added alongside it.

A hook that raises never affects the fetch: the runner logs the failure
and moves on to the next hook.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of a single upstream attempt.

    Attributes:
        policy: Name of the :class:`~assetproxy.client.policy.RetryPolicy`
            the fetch ran under (identifies the call site).
        method: HTTP method.
        url: Request URL without query string.
        attempt: 1-based attempt number.
        status_code: HTTP status, or ``None`` when no response arrived.
        error: Error class name (``"NetworkError"``, ``"ReadError"``) or
            ``None``.
        duration: Wall-clock seconds spent on the attempt.
        size: Response body size in bytes (0 when unread).
        rate_limited: Whether the response was classified as rate limiting.
        will_retry: Whether the fetcher is going to retry after this attempt.
    """

    policy: str
    method: str
    url: str
    attempt: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    duration: float = 0.0
    size: int = 0
    rate_limited: bool = False
    will_retry: bool = False


class AttemptHook:
    """Base class for attempt observers. Override :meth:`on_attempt`."""

    name: str = "hook"

    def on_attempt(self, record: AttemptRecord) -> None:
        """Called once per upstream attempt. The default does nothing."""


class LoggingHook(AttemptHook):
    """Writes attempt records through a :mod:`logging` logger.

    Clean attempts are logged at DEBUG; attempts that failed or are about to
    be retried are logged at WARNING. Record fields are attached via
    ``extra`` so structured handlers can pick them up.
    """

    name = "logging"

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logging.getLogger("assetproxy.upstream")

    def on_attempt(self, record: AttemptRecord) -> None:
        level = logging.DEBUG
        if record.error or record.will_retry or record.rate_limited:
            level = logging.WARNING
        outcome = record.error or record.status_code
        self._log.log(
            level,
            "%s %s %s attempt=%d outcome=%s duration=%.3fs size=%d",
            record.policy,
            record.method,
            record.url,
            record.attempt,
            outcome,
            record.duration,
            record.size,
            extra={"attempt_record": asdict(record)},
        )


class HookRunner:
    """Delivers attempt records to hooks in registration order.

    Args:
        hooks: Initial hooks. Defaults to a single :class:`LoggingHook`.
    """

    def __init__(self, hooks: Optional[list[AttemptHook]] = None) -> None:
        self._hooks: list[AttemptHook] = list(hooks) if hooks is not None else [LoggingHook()]

    @property
    def hooks(self) -> list[AttemptHook]:
        return list(self._hooks)

    def register(self, hook: AttemptHook) -> None:
        """Append *hook* to the delivery list."""
        self._hooks.append(hook)

    def run_attempt(self, record: AttemptRecord) -> None:
        """Deliver *record* to every hook; a failing hook is logged and skipped."""
        for hook in self._hooks:
            try:
                hook.on_attempt(record)
            except Exception:
                logger.warning("Attempt hook %r failed", hook.name, exc_info=True)
