"""Resilient upstream fetcher -- retry, backoff, and rate-limit handling.

:class:`ResilientFetcher` issues one *logical* upstream call and hides the
upstream's unreliability from its caller:

* **Network failures** (DNS, refused connections, transport timeouts) and
  **read failures** (the body stream breaks mid-way) are retried with
  exponential backoff until the policy's retry budget is spent, then raised
  as :class:`~assetproxy.exceptions.NetworkError` /
  :class:`~assetproxy.exceptions.ReadError`.
* **Rate limiting** (see :func:`~assetproxy.client.ratelimit.is_rate_limited`)
  is retried with a larger backoff base. When the budget runs out while
  still throttled, the last response is returned as a best-effort
  :class:`~assetproxy.client.response.FetchOutcome` -- not an error.
* **Everything else**, including ordinary 4xx/5xx statuses, is returned
  immediately without retrying.

The retry loop is a small state machine: each attempt produces an
:class:`AttemptResult` tagged ``SUCCESS``, ``RETRYABLE`` or ``FATAL``, and
:meth:`ResilientFetcher._run` acts on the tag alone. An overall deadline
(:attr:`~assetproxy.client.policy.RetryPolicy.deadline`) bounds the whole
loop, backoff sleeps included.

Example::

    async with ResilientFetcher(timeout=10) as fetcher:
        outcome = await fetcher.fetch(
            "https://thumbnails.roblox.com/v1/assets",
            RequestOptions(params={"assetIds": "1818,2151"}),
            RetryPolicy(name="thumbnails", max_retries=5, deadline=30),
        )
"""

from __future__ import annotations

import asyncio
import enum
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from assetproxy.client.policy import RetryPolicy
from assetproxy.client.ratelimit import is_rate_limited
from assetproxy.client.response import FetchOutcome, parse_body
from assetproxy.exceptions import (
    AssetProxyError,
    DeadlineExceededError,
    NetworkError,
    ReadError,
)
from assetproxy.hooks import AttemptRecord, HookRunner
from assetproxy.output import get_output


@dataclass(frozen=True)
class RequestOptions:
    """Per-call request details.

    Attributes:
        method: HTTP method; the proxy only ever issues ``GET``.
        params: Query parameters.
        headers: Extra headers, including any pre-built credential header
            set supplied by the caller.
    """

    method: str = "GET"
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


class AttemptKind(str, enum.Enum):
    """What the retry loop should do after an attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class AttemptResult:
    """Tagged result of a single attempt.

    ``SUCCESS`` carries an :attr:`outcome`; ``RETRYABLE`` carries the
    :attr:`delay` to sleep before the next attempt; ``FATAL`` carries the
    :attr:`error` to raise and the transport exception that caused it.
    """

    kind: AttemptKind
    outcome: Optional[FetchOutcome] = None
    error: Optional[AssetProxyError] = None
    cause: Optional[BaseException] = None
    delay: float = 0.0


class ResilientFetcher:
    """Async upstream client with retry, backoff, and rate-limit handling.

    Must be used as an async context manager unless an ``httpx.AsyncClient``
    is injected, in which case the caller owns that client's lifetime.

    Args:
        timeout: Per-attempt transport timeout in seconds.
        hook_runner: Receives one :class:`~assetproxy.hooks.AttemptRecord`
            per attempt. Defaults to a runner with a logging hook.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one backed by
            ``httpx.MockTransport``).
        sleep: Coroutine used for backoff delays.
        rng: Random source for jitter.
        clock: Monotonic clock used to time attempts.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        hook_runner: Optional[HookRunner] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._hook_runner = hook_runner if hook_runner is not None else HookRunner()
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> ResilientFetcher:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def fetch(
        self,
        url: str,
        options: Optional[RequestOptions] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> FetchOutcome:
        """Perform one logical upstream call.

        Args:
            url: Request URL (query parameters go in *options*).
            options: Method, params, and headers. Defaults to a bare GET.
            policy: Retry budget and backoff settings. Defaults to a single
                attempt with no deadline.

        Returns:
            The :class:`~assetproxy.client.response.FetchOutcome` of the final
            attempt. ``outcome.rate_limited`` is ``True`` when the retry
            budget ran out while the upstream was still throttling.

        Raises:
            NetworkError: The transport failed on every allowed attempt.
            ReadError: The body could not be read on every allowed attempt.
            DeadlineExceededError: The policy deadline passed first.
        """
        assert self._client is not None, "Fetcher not initialised -- use as async context manager"
        options = options or RequestOptions()
        policy = policy or RetryPolicy(name="default", max_retries=0)

        if policy.deadline is None:
            return await self._run(url, options, policy)
        try:
            return await asyncio.wait_for(self._run(url, options, policy), timeout=policy.deadline)
        except asyncio.TimeoutError as exc:
            raise DeadlineExceededError(
                f"{policy.name}: {options.method} {url} exceeded its "
                f"{policy.deadline:g}s deadline"
            ) from exc

    # ------------------------------------------------------------------ #
    # Retry state machine
    # ------------------------------------------------------------------ #

    async def _run(self, url: str, options: RequestOptions, policy: RetryPolicy) -> FetchOutcome:
        """Drive attempts until one is ``SUCCESS`` or ``FATAL``."""
        attempt = 1
        while True:
            result = await self._attempt(url, options, policy, attempt)
            if result.kind is AttemptKind.SUCCESS:
                assert result.outcome is not None
                return result.outcome
            if result.kind is AttemptKind.FATAL:
                assert result.error is not None
                raise result.error from result.cause
            await self._sleep(result.delay)
            attempt += 1

    async def _attempt(
        self,
        url: str,
        options: RequestOptions,
        policy: RetryPolicy,
        attempt: int,
    ) -> AttemptResult:
        """Issue the request once and classify what happened."""
        assert self._client is not None
        started = self._clock()
        request = self._client.build_request(
            options.method, url, params=options.params, headers=options.headers,
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            return self._failed(NetworkError, exc, request, policy, attempt, started)

        try:
            try:
                raw = await response.aread()
            finally:
                await response.aclose()
        except (httpx.RequestError, httpx.StreamError) as exc:
            return self._failed(
                ReadError, exc, request, policy, attempt, started, response.status_code,
            )

        parsed = parse_body(raw)
        rate_limited = is_rate_limited(response.status_code, parsed)
        will_retry = rate_limited and attempt <= policy.max_retries
        self._record(
            request, policy, attempt, started,
            status_code=response.status_code,
            size=len(raw),
            rate_limited=rate_limited,
            will_retry=will_retry,
        )

        if will_retry:
            delay = policy.rate_limit_delay(attempt, self._rng)
            get_output().debug(
                f"{policy.name}: rate limited (HTTP {response.status_code}), retrying in "
                f"{delay:.2f}s (attempt {attempt}/{policy.max_retries + 1})"
            )
            return AttemptResult(AttemptKind.RETRYABLE, delay=delay)

        outcome = FetchOutcome(
            status_code=response.status_code,
            raw_body=raw,
            parsed_body=parsed,
            attempts=attempt,
            rate_limited=rate_limited,
        )
        return AttemptResult(AttemptKind.SUCCESS, outcome=outcome)

    def _failed(
        self,
        error_cls: type[NetworkError] | type[ReadError],
        exc: Exception,
        request: httpx.Request,
        policy: RetryPolicy,
        attempt: int,
        started: float,
        status_code: Optional[int] = None,
    ) -> AttemptResult:
        """Classify a network or read failure as retryable or fatal."""
        will_retry = attempt <= policy.max_retries
        self._record(
            request, policy, attempt, started,
            status_code=status_code,
            error=error_cls.__name__,
            will_retry=will_retry,
        )
        if will_retry:
            delay = policy.network_delay(attempt, self._rng)
            get_output().debug(
                f"{policy.name}: {error_cls.__name__} ({exc}), retrying in {delay:.2f}s "
                f"(attempt {attempt}/{policy.max_retries + 1})"
            )
            return AttemptResult(AttemptKind.RETRYABLE, delay=delay)

        error = error_cls(
            f"{policy.name}: {request.method} {request.url} failed after "
            f"{attempt} attempts: {exc}",
            attempts=attempt,
        )
        return AttemptResult(AttemptKind.FATAL, error=error, cause=exc)

    def _record(
        self,
        request: httpx.Request,
        policy: RetryPolicy,
        attempt: int,
        started: float,
        **fields: Any,
    ) -> None:
        self._hook_runner.run_attempt(
            AttemptRecord(
                policy=policy.name,
                method=request.method,
                url=str(request.url).partition("?")[0],
                attempt=attempt,
                duration=self._clock() - started,
                **fields,
            )
        )
