"""Tests for pair validation, bucket routing and interrupted-move recovery."""

from __future__ import annotations

import logging
import threading
import time
from typing import List

import httpx
import pytest

from MjlogKit.Harvest import extract
from MjlogKit.Harvest.classify import MarkerCheck, PairClassifier
from MjlogKit.Harvest.errors import FormatMismatchError
from MjlogKit.Harvest.io_utils import sweep_partials
from MjlogKit.Harvest.ratelimit import MinIntervalGate
from MjlogKit.Harvest.state import HarvestLayout
from MjlogKit.Harvest.types import ItemOutcome, PairBucket, RecordState
from tests.harvest.fakes import CONVERT_URL, CONVERTED_OK, RAW_OK, FakeRemote

ID_A = "2009022011gm-00a9-0000-d7935c6d"
ID_B = "2009022011gm-00a9-0000-9f4f2a11"


def _bucket_files(layout: HarvestLayout, bucket: PairBucket, identifier: str):
    return layout.raw_path(identifier, bucket), layout.converted_path(identifier, bucket)


class TestMarkerCheck:
    def test_require(self, tmp_path) -> None:
        check = MarkerCheck(raw_marker='<mjloggm ver="2.3">', converted_marker='"ver":2.3')
        good = tmp_path / "good.xml"
        good.write_bytes(RAW_OK)
        check.require(good, role="raw")

        with pytest.raises(FormatMismatchError) as excinfo:
            check.require(good, role="converted")
        assert excinfo.value.role == "converted"


class TestMarkerScenario:
    def test_well_formed_pair_is_trusted(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        remote.add(CONVERT_URL.format(id=ID_A), (200, CONVERTED_OK))

        summary = PairClassifier(mock_client, layout, harvest_config).run()

        assert summary.count(ItemOutcome.TRUSTED) == 1
        raw, converted = _bucket_files(layout, PairBucket.TRUSTED, ID_A)
        assert raw.read_bytes() == RAW_OK
        assert converted.read_bytes() == CONVERTED_OK
        assert layout.record_state(ID_A) is RecordState.ABSENT
        assert not layout.converted_path(ID_A).exists()

    def test_raw_without_marker_is_quarantined(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, b'<mjloggm ver="2.2"><GO/></mjloggm>')
        remote.add(CONVERT_URL.format(id=ID_A), (200, CONVERTED_OK))

        summary = PairClassifier(mock_client, layout, harvest_config).run()

        assert summary.count(ItemOutcome.QUARANTINED) == 1
        raw, converted = _bucket_files(layout, PairBucket.QUARANTINED, ID_A)
        assert raw.exists()
        assert converted.read_bytes() == CONVERTED_OK

    def test_converted_without_marker_is_quarantined(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        remote.add(CONVERT_URL.format(id=ID_A), (200, b'{"ver":2.2}'))

        pair = PairClassifier(mock_client, layout, harvest_config).classify_one(ID_A)

        assert pair.bucket is PairBucket.QUARANTINED
        assert pair.reasons == ("converted_marker_missing",)

    def test_failed_conversion_is_quarantined(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        remote.add(CONVERT_URL.format(id=ID_A), (500, b'{"ver":2.3,"error":true}'))

        pair = PairClassifier(mock_client, layout, harvest_config).classify_one(ID_A)

        assert pair.bucket is PairBucket.QUARANTINED
        assert "http_status_500" in pair.reasons

    def test_transport_error_is_quarantined_with_empty_artifact(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        remote.add(CONVERT_URL.format(id=ID_A), httpx.ConnectError("refused"))

        pair = PairClassifier(mock_client, layout, harvest_config).classify_one(ID_A)

        assert pair.bucket is PairBucket.QUARANTINED
        assert pair.reasons[0] == "transport_error"
        raw, converted = _bucket_files(layout, PairBucket.QUARANTINED, ID_A)
        assert raw.exists()
        assert converted.stat().st_size == 0


class TestPairClassifier:
    def test_partition_is_complete_and_disjoint(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        identifiers = [f"2009022011gm-00a9-0000-{i:08x}" for i in range(6)]
        for i, identifier in enumerate(identifiers):
            write_raw(identifier, RAW_OK if i % 2 == 0 else b"<broken/>")
            remote.add(CONVERT_URL.format(id=identifier), (200, CONVERTED_OK))

        summary = PairClassifier(mock_client, layout, harvest_config).run()

        trusted = set(layout.identifiers_in(PairBucket.TRUSTED))
        quarantined = set(layout.identifiers_in(PairBucket.QUARANTINED))
        assert trusted | quarantined == set(identifiers)
        assert trusted.isdisjoint(quarantined)
        assert summary.count(ItemOutcome.TRUSTED) == 3
        assert summary.count(ItemOutcome.QUARANTINED) == 3
        assert layout.identifiers_in(PairBucket.UNCLASSIFIED) == []

    def test_classified_pairs_are_not_revisited(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        remote.add(CONVERT_URL.format(id=ID_A), (200, CONVERTED_OK))
        classifier = PairClassifier(mock_client, layout, harvest_config)

        classifier.run()
        second = classifier.run()

        assert second.total == 0
        assert remote.count(CONVERT_URL.format(id=ID_A)) == 1

    def test_empty_and_missing_raw_records_are_not_candidates(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, b"")
        classifier = PairClassifier(mock_client, layout, harvest_config)

        assert classifier.candidates() == []
        assert classifier.candidates([ID_B]) == []
        assert classifier.run().total == 0
        assert remote.calls == []

    def test_reconcile_completes_interrupted_move(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config
    ) -> None:
        layout.ensure_dirs(layout.downloads_dir, layout.trusted_dir)
        layout.raw_path(ID_A, PairBucket.TRUSTED).write_bytes(RAW_OK)
        layout.converted_path(ID_A).write_bytes(CONVERTED_OK)

        summary = PairClassifier(mock_client, layout, harvest_config).run()

        assert summary.total == 0
        assert layout.converted_path(ID_A, PairBucket.TRUSTED).read_bytes() == CONVERTED_OK
        assert not layout.converted_path(ID_A).exists()
        assert remote.calls == []

    def test_unexpected_error_still_quarantines(
        self, mock_client, layout: HarvestLayout, harvest_config, write_raw, monkeypatch
    ) -> None:
        write_raw(ID_A, RAW_OK)
        classifier = PairClassifier(mock_client, layout, harvest_config)

        def boom(identifier: str):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(classifier, "evaluate", boom)
        pair = classifier.classify_one(ID_A)

        assert pair.bucket is PairBucket.QUARANTINED
        assert pair.reasons == ("error_RuntimeError",)
        assert layout.raw_path(ID_A, PairBucket.QUARANTINED).exists()

    def test_fetch_stage_sweep_spares_inflight_conversion(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)

        def convert(request: httpx.Request) -> httpx.Response:
            def body():
                # fetch-records starting up while the artifact is streaming
                sweep_partials(layout.downloads_dir, prefix=extract.PARTIAL)
                yield CONVERTED_OK

            return httpx.Response(200, content=body())

        remote.add(CONVERT_URL.format(id=ID_A), convert)

        PairClassifier(mock_client, layout, harvest_config).run()

        assert layout.bucket_of(ID_A) is PairBucket.TRUSTED
        assert layout.converted_path(ID_A, PairBucket.TRUSTED).read_bytes() == CONVERTED_OK

    def test_marker_failure_is_logged_with_context(
        self,
        mock_client,
        remote: FakeRemote,
        layout: HarvestLayout,
        harvest_config,
        write_raw,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        write_raw(ID_A, b"<broken/>")
        remote.add(CONVERT_URL.format(id=ID_A), (200, CONVERTED_OK))

        with caplog.at_level(logging.INFO, logger="MjlogKit.Harvest.classify"):
            PairClassifier(mock_client, layout, harvest_config).classify_one(ID_A)

        fields = [
            r.extra_fields for r in caplog.records if hasattr(r, "extra_fields")
        ]
        assert any(
            f["error_message"] == "Format marker missing" and f["item"] == ID_A for f in fields
        )

    def test_dry_run_moves_nothing(
        self, mock_client, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        write_raw(ID_A, RAW_OK)
        write_raw(ID_B, RAW_OK)

        summary = PairClassifier(mock_client, layout, harvest_config).run(dry_run=True, limit=1)

        assert summary.count(ItemOutcome.PLANNED) == 1
        assert remote.calls == []
        assert layout.record_state(ID_A) is RecordState.PRESENT


class TestPacing:
    def test_conversion_requests_are_spaced_across_workers(
        self, remote: FakeRemote, layout: HarvestLayout, harvest_config, write_raw
    ) -> None:
        interval_ms = 30
        stamps: List[float] = []
        lock = threading.Lock()

        def convert(request: httpx.Request) -> httpx.Response:
            with lock:
                stamps.append(time.monotonic())
            return httpx.Response(200, content=CONVERTED_OK)

        identifiers = [f"2009022011gm-00a9-0000-{i:08x}" for i in range(6)]
        for identifier in identifiers:
            write_raw(identifier, RAW_OK)
            remote.add(CONVERT_URL.format(id=identifier), convert)

        cfg = harvest_config.model_copy(update={"workers": 3})
        gate = MinIntervalGate(interval_ms, poll_interval_s=0.001)
        with httpx.Client(transport=remote.transport()) as client:
            summary = PairClassifier(client, layout, cfg, gate=gate).run()

        assert summary.count(ItemOutcome.TRUSTED) == 6
        stamps.sort()
        elapsed_ms = (stamps[-1] - stamps[0]) * 1000
        assert elapsed_ms >= 5 * interval_ms - 10, elapsed_ms
