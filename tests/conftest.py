"""Shared test fixtures for assetproxy.

Provides an isolated config environment, a controllable clock, a recording
sleep, and a factory for fetchers backed by :class:`httpx.MockTransport`.
These fixtures are automatically discovered by pytest and available to all
test modules without explicit imports.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import httpx
import pytest

from assetproxy.client.fetcher import ResilientFetcher
from assetproxy.hooks import AttemptHook, AttemptRecord, HookRunner
from assetproxy.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at creation
    time; CliRunner swaps those streams, so a stale manager would write to a
    closed file in the next test.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points the XDG directories at *tmp_path*, clears every environment
    variable the config resolver reads, and changes into *tmp_path*.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("assetproxy.config._is_xdg_platform", lambda: True)

    for var in [
        "ASSETPROXY_CONFIG",
        "ASSETPROXY_HOST",
        "ASSETPROXY_THUMBNAIL_URL",
        "ASSETPROXY_ASSET_URL",
        "PORT",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Time control
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Async stand-in for :func:`asyncio.sleep` that records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingHook(AttemptHook):
    """Collects every attempt record it sees."""

    name = "recording"

    def __init__(self) -> None:
        self.records: list[AttemptRecord] = []

    def on_attempt(self, record: AttemptRecord) -> None:
        self.records.append(record)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def recorder() -> RecordingHook:
    return RecordingHook()


# ---------------------------------------------------------------------------
# Fetcher factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_fetcher(
    sleeps: SleepRecorder, recorder: RecordingHook,
) -> Callable[..., ResilientFetcher]:
    """Return a factory building fetchers over a mock transport.

    The factory takes an ``httpx.MockTransport`` handler and returns a
    :class:`ResilientFetcher` that sleeps via :class:`SleepRecorder`, uses a
    seeded random source, and reports attempts to :class:`RecordingHook`.
    """

    def _factory(
        handler: Callable[[httpx.Request], Any],
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> ResilientFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ResilientFetcher(
            client=client,
            hook_runner=HookRunner([recorder]),
            sleep=sleep or sleeps,
            rng=random.Random(1234),
        )

    return _factory
