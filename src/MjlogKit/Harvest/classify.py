"""Pair Validator & Classifier.

For every raw record sitting non-empty in ``<downloads-dir>`` and not yet in a
bucket:

1. Wait on the shared :class:`~MjlogKit.Harvest.ratelimit.MinIntervalGate`,
   then fetch a fresh converted artifact from the conversion endpoint.
2. Check that the transfer succeeded, that the raw record carries the raw
   format marker, and that the artifact carries the converted format marker.
3. Move both files into ``trusted/`` when every check passed, otherwise into
   ``quarantined/``; basenames are kept so quarantined pairs can be inspected.

Checks never raise out of an item: any failure only decides the bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx

from .config import HarvestConfig, SelectionConfig
from .errors import FormatMismatchError, TransportError, log_item_failure
from .io_utils import contains_marker, move_pair, partial_prefix, sweep_partials
from .net.download import fetch_to_file
from .ratelimit import MinIntervalGate
from .state import HarvestLayout
from .summary import StageSummary
from .types import ClassifiedPair, Identifier, ItemOutcome, PairBucket, RecordState
from .workers import run_items

LOGGER = logging.getLogger(__name__)

STAGE = "classify"
PARTIAL = partial_prefix(STAGE)


@dataclass(frozen=True)
class MarkerCheck:
    """Format-version markers expected in the raw and converted documents."""

    raw_marker: str
    converted_marker: str

    @classmethod
    def from_config(cls, selection: SelectionConfig) -> "MarkerCheck":
        return cls(raw_marker=selection.raw_marker, converted_marker=selection.converted_marker)

    def require(self, path, *, role: str) -> None:
        """Raise :class:`FormatMismatchError` if the role's marker is missing from ``path``."""
        marker = self.raw_marker if role == "raw" else self.converted_marker
        if not contains_marker(path, marker.encode("utf-8")):
            raise FormatMismatchError(path, marker, role=role)


class PairClassifier:
    """Validates raw/converted pairs and routes them into trusted or quarantined."""

    def __init__(
        self,
        client: httpx.Client,
        layout: HarvestLayout,
        config: HarvestConfig,
        *,
        gate: Optional[MinIntervalGate] = None,
        markers: Optional[MarkerCheck] = None,
    ) -> None:
        self._client = client
        self._layout = layout
        self._config = config
        self._gate = gate or MinIntervalGate(config.pacing.convert_min_interval_ms)
        self._markers = markers or MarkerCheck.from_config(config.selection)

    def reconcile(self) -> int:
        """Finish pair moves interrupted between the raw and converted rename.

        Returns:
            Number of converted artifacts moved into their pair's bucket.
        """
        layout = self._layout
        fixed = 0
        for identifier in layout.identifiers_in(PairBucket.UNCLASSIFIED, suffix=layout.converted_suffix):
            if layout.raw_path(identifier).exists():
                continue
            bucket = layout.bucket_of(identifier)
            if bucket is PairBucket.UNCLASSIFIED:
                continue
            target = layout.converted_path(identifier, bucket)
            layout.converted_path(identifier).replace(target)
            LOGGER.info("Completed interrupted move of %s into %s", identifier, bucket.value)
            fixed += 1
        return fixed

    def candidates(self, identifiers: Optional[Iterable[Identifier]] = None) -> List[Identifier]:
        """Unclassified identifiers whose raw record is present and non-empty."""
        layout = self._layout
        pool = (
            sorted(set(identifiers))
            if identifiers is not None
            else layout.identifiers_in(PairBucket.UNCLASSIFIED)
        )
        return [
            identifier
            for identifier in pool
            if layout.record_state(identifier) is RecordState.PRESENT
            and layout.bucket_of(identifier) is PairBucket.UNCLASSIFIED
        ]

    def _fetch_converted(self, identifier: Identifier) -> Optional[str]:
        """Fetch the artifact; return a failure reason or ``None`` on success."""
        url = self._config.endpoints.convert_url.format(id=identifier)
        with self._gate:
            try:
                result = fetch_to_file(
                    self._client,
                    url,
                    self._layout.converted_path(identifier),
                    chunk_size=self._config.http.chunk_size_bytes,
                    partial_prefix=PARTIAL,
                )
            except TransportError as e:
                log_item_failure(LOGGER, STAGE, identifier, e)
                return "transport_error"
        if not result.ok:
            return f"http_status_{result.status}"
        return None

    def evaluate(self, identifier: Identifier) -> Tuple[str, ...]:
        """Fetch the converted artifact and run every check; return failed-check reasons."""
        reasons: List[str] = []
        transport_failure = self._fetch_converted(identifier)
        if transport_failure:
            reasons.append(transport_failure)

        for role, path in (
            ("raw", self._layout.raw_path(identifier)),
            ("converted", self._layout.converted_path(identifier)),
        ):
            try:
                self._markers.require(path, role=role)
            except FormatMismatchError as e:
                log_item_failure(LOGGER, STAGE, identifier, e, level=logging.INFO)
                reasons.append(f"{role}_marker_missing")
        return tuple(reasons)

    def route(self, identifier: Identifier, reasons: Tuple[str, ...]) -> ClassifiedPair:
        """Move the pair into the bucket ``reasons`` implies."""
        bucket = PairBucket.QUARANTINED if reasons else PairBucket.TRUSTED
        move_pair(
            self._layout.raw_path(identifier),
            self._layout.converted_path(identifier),
            self._layout.bucket_dir(bucket),
        )
        if reasons:
            LOGGER.warning("Quarantined %s: %s", identifier, ", ".join(reasons))
        else:
            LOGGER.info("Trusted: %s", identifier)
        return ClassifiedPair(identifier=identifier, bucket=bucket, reasons=reasons)

    def classify_one(self, identifier: Identifier) -> ClassifiedPair:
        try:
            reasons = self.evaluate(identifier)
        except Exception as e:
            log_item_failure(LOGGER, STAGE, identifier, e, level=logging.ERROR)
            reasons = (f"error_{type(e).__name__}",)
        return self.route(identifier, reasons)

    def _process(self, identifier: Identifier) -> Tuple[ItemOutcome, int]:
        pair = self.classify_one(identifier)
        return (ItemOutcome.TRUSTED if pair.trusted else ItemOutcome.QUARANTINED), 0

    def run(
        self,
        identifiers: Optional[Iterable[Identifier]] = None,
        *,
        dry_run: bool = False,
        limit: Optional[int] = None,
    ) -> StageSummary:
        """Classify every pending pair.

        Args:
            identifiers: Restrict to these identifiers (default: all pending)
            dry_run: Log the candidates without fetching or moving
            limit: Classify at most this many pairs

        Raises:
            FatalConfigError: If a bucket or the downloads directory is unusable.
        """
        layout = self._layout
        layout.ensure_dirs(layout.downloads_dir, layout.trusted_dir, layout.quarantined_dir)
        sweep_partials(layout.downloads_dir, prefix=PARTIAL)

        summary = StageSummary(stage=STAGE, dry_run=dry_run)
        if not dry_run:
            self.reconcile()

        pending = self.candidates(identifiers)
        limit = limit if limit is not None else self._config.limit
        if limit is not None:
            pending = pending[:limit]

        if dry_run:
            for identifier in pending:
                LOGGER.info("Would classify: %s", identifier)
                summary.add(identifier, ItemOutcome.PLANNED)
            return summary

        for identifier, outcome, _ in run_items(
            STAGE, self._process, pending, workers=self._config.workers
        ):
            summary.add(identifier, outcome)
        LOGGER.info(
            "Classification done: %d trusted, %d quarantined, %d failed",
            summary.count(ItemOutcome.TRUSTED),
            summary.count(ItemOutcome.QUARANTINED),
            summary.failed,
        )
        return summary
