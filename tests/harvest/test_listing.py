"""Tests for listing parsing, the HTTP listing source and its retry policy."""

from __future__ import annotations

import httpx
import pytest

from MjlogKit.Harvest.errors import TransportError
from MjlogKit.Harvest.listing import (
    HttpListingSource,
    StaticListingSource,
    parse_listing,
)
from MjlogKit.Harvest.net.retry import create_listing_retry_policy, is_retryable
from MjlogKit.Harvest.types import RemoteEntry
from tests.harvest.fakes import LISTING_URL, FakeRemote, listing_body

PATTERN = r"file:'([^']*)',size:([0-9]+)"


def _no_sleep(_: float) -> None:
    return None


class TestParseListing:
    def test_extracts_name_size_pairs(self) -> None:
        body = listing_body(("scc20090220.html.gz", 1234), ("sca20090220.log.gz", 99))
        entries = parse_listing(body.decode(), PATTERN)
        assert entries == [
            RemoteEntry("scc20090220.html.gz", 1234),
            RemoteEntry("sca20090220.log.gz", 99),
        ]

    def test_last_declaration_wins(self) -> None:
        text = "file:'a.gz',size:10 file:'a.gz',size:20"
        assert parse_listing(text, PATTERN) == [RemoteEntry("a.gz", 20)]

    def test_malformed_entries_dropped(self) -> None:
        text = "file:'',size:10 file:'b.gz',size:5 garbage"
        assert parse_listing(text, PATTERN) == [RemoteEntry("b.gz", 5)]

    def test_static_source(self) -> None:
        entries = [RemoteEntry("a.gz", 1)]
        assert list(StaticListingSource(entries).entries()) == entries


class TestRetryPolicy:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (TransportError("timeout"), True),
            (TransportError("busy", status=503), True),
            (TransportError("slow down", status=429), True),
            (TransportError("missing", status=404), False),
            (ValueError("nope"), False),
        ],
    )
    def test_is_retryable(self, error: BaseException, expected: bool) -> None:
        assert is_retryable(error) is expected


class TestHttpListingSource:
    def test_retries_transient_failures(self, mock_client: httpx.Client, remote: FakeRemote) -> None:
        replies = [(503, b""), (502, b""), (200, listing_body(("scc1.html.gz", 3)))]

        def flaky(request: httpx.Request) -> httpx.Response:
            status, body = replies.pop(0)
            return httpx.Response(status, content=body)

        remote.add(LISTING_URL, flaky)
        source = HttpListingSource(
            mock_client,
            LISTING_URL,
            PATTERN,
            retrying=create_listing_retry_policy(max_attempts=4, sleep=_no_sleep),
        )

        assert list(source.entries()) == [RemoteEntry("scc1.html.gz", 3)]
        assert remote.count(LISTING_URL) == 3

    def test_gives_up_after_max_attempts(self, mock_client: httpx.Client, remote: FakeRemote) -> None:
        remote.add(LISTING_URL, (500, b""))
        source = HttpListingSource(
            mock_client,
            LISTING_URL,
            PATTERN,
            retrying=create_listing_retry_policy(max_attempts=2, sleep=_no_sleep),
        )
        with pytest.raises(TransportError) as excinfo:
            source.entries()
        assert excinfo.value.status == 500
        assert remote.count(LISTING_URL) == 2

    def test_client_errors_not_retried(self, mock_client: httpx.Client, remote: FakeRemote) -> None:
        source = HttpListingSource(
            mock_client,
            LISTING_URL,
            PATTERN,
            retrying=create_listing_retry_policy(max_attempts=4, sleep=_no_sleep),
        )
        with pytest.raises(TransportError):
            source.entries()
        assert remote.count(LISTING_URL) == 1

    def test_connect_errors_translated(self, mock_client: httpx.Client, remote: FakeRemote) -> None:
        remote.add(LISTING_URL, httpx.ConnectError("refused"))
        source = HttpListingSource(mock_client, LISTING_URL, PATTERN)
        with pytest.raises(TransportError) as excinfo:
            source.entries()
        assert excinfo.value.details["reason"] == "connect"
        assert excinfo.value.status is None
