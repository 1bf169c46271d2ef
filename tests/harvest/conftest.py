"""Shared fixtures for the harvest test-suite.

All network traffic is served by :class:`~tests.harvest.fakes.FakeRemote`
through ``httpx.MockTransport``; nothing here touches the real network. Each
test gets its own working root under ``tmp_path``.
"""

from __future__ import annotations

import gzip
from pathlib import Path
from typing import Callable, Iterable

import pytest

from MjlogKit.Harvest.config import EndpointsConfig, HarvestConfig, PacingConfig
from MjlogKit.Harvest.net.client import build_http_client
from MjlogKit.Harvest.state import HarvestLayout
from tests.harvest.fakes import (
    ARCHIVE_URL,
    CONVERT_URL,
    LISTING_URL,
    RAW_OK,
    RECORD_URL,
    FakeRemote,
)


@pytest.fixture
def harvest_config(tmp_path: Path) -> HarvestConfig:
    """Config pointed at ``tmp_path`` with test endpoints and no conversion pacing."""
    return HarvestConfig(
        root=str(tmp_path),
        endpoints=EndpointsConfig(
            listing_url=LISTING_URL,
            archive_url=ARCHIVE_URL,
            record_url=RECORD_URL,
            convert_url=CONVERT_URL,
        ),
        pacing=PacingConfig(convert_min_interval_ms=0, listing_max_attempts=3),
    )


@pytest.fixture
def layout(harvest_config: HarvestConfig) -> HarvestLayout:
    return HarvestLayout.from_config(harvest_config)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def mock_client(harvest_config: HarvestConfig, remote: FakeRemote):
    client = build_http_client(harvest_config.http, transport=remote.transport())
    yield client
    client.close()


@pytest.fixture
def make_archive(layout: HarvestLayout) -> Callable[..., Path]:
    """Write a gzip archive into the index directory and return its path."""

    def _make(name: str, lines: Iterable[str]) -> Path:
        path = layout.index_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line + "\n")
        return path

    return _make


@pytest.fixture
def write_raw(layout: HarvestLayout) -> Callable[..., Path]:
    """Place a raw record in the downloads directory."""

    def _write(identifier: str, body: bytes = RAW_OK) -> Path:
        path = layout.raw_path(identifier)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
        return path

    return _write
