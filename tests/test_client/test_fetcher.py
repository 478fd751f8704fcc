"""Tests for ResilientFetcher retry, backoff, and rate-limit handling."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from assetproxy.client.fetcher import RequestOptions, ResilientFetcher
from assetproxy.client.policy import RetryPolicy
from assetproxy.exceptions import DeadlineExceededError, NetworkError, ReadError


URL = "https://upstream.test/v1/assets"
RATE_LIMIT_BODY = {"errors": [{"code": 0, "message": "Too many requests"}]}


def _policy(max_retries: int = 3, **kwargs) -> RetryPolicy:
    return RetryPolicy(name="test", max_retries=max_retries, **kwargs)


class _BrokenStream(httpx.AsyncByteStream):
    """Body stream that fails on the first read."""

    async def __aiter__(self):
        raise httpx.ReadError("connection reset while reading body")
        yield b""  # pragma: no cover


# ---------------------------------------------------------------------------
# Successful calls
# ---------------------------------------------------------------------------


class TestSuccess:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, make_fetcher, sleeps) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"targetId": 1}]})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy())

        assert outcome.ok
        assert outcome.attempts == 1
        assert outcome.parsed_body == {"data": [{"targetId": 1}]}
        assert outcome.rate_limited is False
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_params_and_headers_forwarded(self, make_fetcher) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        fetcher = make_fetcher(handler)
        await fetcher.fetch(
            URL,
            RequestOptions(params={"assetIds": "1,2"}, headers={"Cookie": "session=abc"}),
            _policy(),
        )

        assert seen[0].url.params["assetIds"] == "1,2"
        assert seen[0].headers["Cookie"] == "session=abc"
        assert seen[0].method == "GET"

    @pytest.mark.asyncio
    async def test_default_policy_is_single_attempt(self, make_fetcher) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            raise httpx.ConnectError("refused")

        fetcher = make_fetcher(handler)
        with pytest.raises(NetworkError):
            await fetcher.fetch(URL)
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_malformed_body_returned_without_parse(self, make_fetcher) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>oops</html>")

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy())

        assert outcome.parsed_body is None
        assert outcome.raw_body == b"<html>oops</html>"
        assert outcome.attempts == 1


# ---------------------------------------------------------------------------
# Network and read failures
# ---------------------------------------------------------------------------


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_permanent_network_failure_makes_n_plus_one_attempts(
        self, make_fetcher, sleeps,
    ) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            raise httpx.ConnectError("Connection refused")

        fetcher = make_fetcher(handler)
        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch(URL, policy=_policy(max_retries=2))

        assert call_count == 3
        assert exc_info.value.attempts == 3
        assert len(sleeps.delays) == 2
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_recovers_after_network_failure(self, make_fetcher, sleeps) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise httpx.ConnectTimeout("timed out")
            return httpx.Response(200, json={"ok": True})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy(base_delay=0.1, jitter_max=0.2))

        assert outcome.attempts == 2
        assert outcome.ok
        assert len(sleeps.delays) == 1
        assert 0.2 <= sleeps.delays[0] <= 0.4

    @pytest.mark.asyncio
    async def test_backoff_grows_between_attempts(self, make_fetcher, sleeps) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        fetcher = make_fetcher(handler)
        with pytest.raises(NetworkError):
            await fetcher.fetch(URL, policy=_policy(max_retries=3, base_delay=0.1, jitter_max=0))

        assert sleeps.delays == pytest.approx([0.2, 0.4, 0.8])

    @pytest.mark.asyncio
    async def test_broken_body_raises_read_error(self, make_fetcher) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(200, stream=_BrokenStream())

        fetcher = make_fetcher(handler)
        with pytest.raises(ReadError) as exc_info:
            await fetcher.fetch(URL, policy=_policy(max_retries=1))

        assert call_count == 2
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_read_failure_then_success(self, make_fetcher) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(200, stream=_BrokenStream())
            return httpx.Response(200, json={"data": []})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy())

        assert outcome.attempts == 2
        assert outcome.parsed_body == {"data": []}


# ---------------------------------------------------------------------------
# HTTP statuses and rate limiting
# ---------------------------------------------------------------------------


class TestStatusHandling:
    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    @pytest.mark.asyncio
    async def test_plain_error_status_not_retried(self, make_fetcher, sleeps, status) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(status, json={"errors": [{"message": "Something broke"}]})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy())

        assert call_count == 1
        assert outcome.status_code == status
        assert outcome.ok is False
        assert outcome.rate_limited is False
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_429_retried_until_success(self, make_fetcher, sleeps) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count <= 2:
                return httpx.Response(429)
            return httpx.Response(200, json={"data": [{"targetId": 1}]})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(
            URL, policy=_policy(rate_limit_base_delay=0.2, jitter_max=0),
        )

        assert outcome.attempts == 3
        assert outcome.ok
        assert sleeps.delays == pytest.approx([0.4, 0.8])

    @pytest.mark.asyncio
    async def test_rate_limit_in_body_is_retried(self, make_fetcher) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(200, json=RATE_LIMIT_BODY)
            return httpx.Response(200, json={"data": []})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy())

        assert call_count == 2
        assert outcome.rate_limited is False

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_returns_best_effort(self, make_fetcher, sleeps) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(500, json=RATE_LIMIT_BODY)

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy(max_retries=2))

        assert call_count == 3
        assert outcome.attempts == 3
        assert outcome.rate_limited is True
        assert outcome.ok is False
        assert outcome.parsed_body == RATE_LIMIT_BODY
        assert len(sleeps.delays) == 2


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class TestDeadline:
    @pytest.mark.asyncio
    async def test_deadline_bounds_retry_loop(self, make_fetcher) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        fetcher = make_fetcher(handler, sleep=asyncio.sleep)
        policy = _policy(max_retries=10, rate_limit_base_delay=1.0, deadline=0.05)

        with pytest.raises(DeadlineExceededError) as exc_info:
            await fetcher.fetch(URL, policy=policy)
        assert isinstance(exc_info.value, NetworkError)

    @pytest.mark.asyncio
    async def test_fast_call_within_deadline(self, make_fetcher) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        fetcher = make_fetcher(handler)
        outcome = await fetcher.fetch(URL, policy=_policy(deadline=5.0))
        assert outcome.ok


# ---------------------------------------------------------------------------
# Attempt records
# ---------------------------------------------------------------------------


class TestAttemptRecords:
    @pytest.mark.asyncio
    async def test_one_record_per_attempt(self, make_fetcher, recorder) -> None:
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise httpx.ConnectError("refused")
            if call_count == 2:
                return httpx.Response(429)
            return httpx.Response(200, content=b'{"data": []}')

        fetcher = make_fetcher(handler)
        await fetcher.fetch(
            URL, RequestOptions(params={"assetIds": "1"}), _policy(),
        )

        records = recorder.records
        assert [r.attempt for r in records] == [1, 2, 3]
        assert records[0].error == "NetworkError"
        assert records[0].status_code is None
        assert records[0].will_retry is True
        assert records[1].status_code == 429
        assert records[1].rate_limited is True
        assert records[2].will_retry is False
        assert records[2].size == len(b'{"data": []}')
        assert all(r.policy == "test" for r in records)
        assert all(r.url == URL for r in records)

    @pytest.mark.asyncio
    async def test_final_failure_record_not_retrying(self, make_fetcher, recorder) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        fetcher = make_fetcher(handler)
        with pytest.raises(NetworkError):
            await fetcher.fetch(URL, policy=_policy(max_retries=1))

        assert [r.will_retry for r in recorder.records] == [True, False]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_owned_client_closed_on_exit(self) -> None:
        fetcher = ResilientFetcher(timeout=1.0)
        async with fetcher:
            assert fetcher._client is not None
        assert fetcher._client is None

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=json.dumps({}))),
        )
        async with ResilientFetcher(client=client):
            pass
        assert client.is_closed is False
        await client.aclose()
