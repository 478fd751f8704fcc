"""Tests for FetchOutcome and best-effort body parsing."""

from __future__ import annotations

import pytest

from assetproxy.client.response import FetchOutcome, parse_body


def _make_outcome(status_code: int = 200, raw_body: bytes = b"{}", **kwargs) -> FetchOutcome:
    return FetchOutcome(
        status_code=status_code,
        raw_body=raw_body,
        parsed_body=parse_body(raw_body),
        attempts=kwargs.pop("attempts", 1),
        **kwargs,
    )


class TestParseBody:
    def test_valid_json_object(self) -> None:
        assert parse_body(b'{"data": [1, 2]}') == {"data": [1, 2]}

    def test_valid_json_list(self) -> None:
        assert parse_body(b"[1, 2]") == [1, 2]

    @pytest.mark.parametrize("raw", [b"", b"not json", b'{"data": [', b"\xff\xfe\x00"])
    def test_unparseable_yields_none(self, raw) -> None:
        assert parse_body(raw) is None


class TestFetchOutcome:
    @pytest.mark.parametrize("status", [200, 204, 299])
    def test_ok_for_2xx(self, status) -> None:
        assert _make_outcome(status).ok is True

    @pytest.mark.parametrize("status", [301, 404, 500])
    def test_not_ok_outside_2xx(self, status) -> None:
        assert _make_outcome(status).ok is False

    def test_rate_limited_200_is_not_ok(self) -> None:
        assert _make_outcome(200, rate_limited=True).ok is False

    def test_text_replaces_invalid_utf8(self) -> None:
        outcome = _make_outcome(200, b"caf\xe9")
        assert outcome.text == "caf\ufffd"
        assert outcome.parsed_body is None
