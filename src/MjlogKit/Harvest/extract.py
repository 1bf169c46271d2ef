"""Identifier Extractor & Fetcher.

Reads each synchronized archive as a gzip text stream, keeps the lines a
:class:`LineSelector` accepts, and makes sure every extracted identifier has
a non-empty raw record in ``<downloads-dir>``.

Decision table per identifier (derived from disk on every run):

=====================  ==========================
Local state            Action
=====================  ==========================
already classified     skip
PRESENT (non-empty)    skip
EMPTY (zero-length)    fetch again
ABSENT                 fetch
=====================  ==========================

A fetch is one GET whose body is written whatever the HTTP status. A transfer
that dies half-way leaves the record absent (or still zero-length), so killing
the process at any point only ever leaves work the next run picks up.
"""

from __future__ import annotations

import gzip
import logging
import re
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

import httpx

from .config import HarvestConfig, SelectionConfig
from .errors import TransportError, log_item_failure
from .io_utils import partial_prefix, sweep_partials
from .net.download import fetch_to_file
from .state import HarvestLayout
from .summary import StageSummary
from .types import Identifier, ItemOutcome, PairBucket, RecordState, is_safe_identifier
from .workers import run_items

LOGGER = logging.getLogger(__name__)

STAGE = "fetch"
PARTIAL = partial_prefix(STAGE)


def _search(pattern: str) -> Callable[[str], bool]:
    regex = re.compile(pattern)
    return lambda line: regex.search(line) is not None


def _first_group(pattern: str) -> Callable[[str], Optional[str]]:
    regex = re.compile(pattern)

    def extract(line: str) -> Optional[str]:
        match = regex.search(line)
        return match.group(1) if match else None

    return extract


@dataclass(frozen=True)
class LineSelector:
    """Injected line filter plus identifier extractor.

    ``predicate`` decides whether a line belongs to the wanted record category;
    ``extractor`` pulls exactly one identifier out of an accepted line or
    returns ``None``. Tokens that are not usable as file names are rejected.
    """

    predicate: Callable[[str], bool]
    extractor: Callable[[str], Optional[str]]

    @classmethod
    def from_patterns(cls, category: str, identifier_pattern: str) -> "LineSelector":
        return cls(predicate=_search(category), extractor=_first_group(identifier_pattern))

    @classmethod
    def from_config(cls, selection: SelectionConfig) -> "LineSelector":
        return cls.from_patterns(selection.category_filter, selection.identifier_pattern)

    def __call__(self, line: str) -> Optional[Identifier]:
        if not self.predicate(line):
            return None
        token = self.extractor(line)
        if token is None:
            return None
        token = token.strip()
        return token if is_safe_identifier(token) else None


def select_identifiers(lines: Iterable[str], selector: LineSelector) -> List[Identifier]:
    """Identifiers from accepted lines, de-duplicated and sorted."""
    found: Set[Identifier] = set()
    for line in lines:
        token = selector(line)
        if token is not None:
            found.add(token)
    return sorted(found)


def extract_identifiers(archive: Path, selector: LineSelector) -> List[Identifier]:
    """Decompress ``archive`` and return its selected identifiers.

    Raises:
        OSError: If the archive is unreadable or not valid gzip.
        EOFError: If the archive is truncated.
    """
    with gzip.open(archive, "rt", encoding="utf-8", errors="replace") as fh:
        return select_identifiers(fh, selector)


class RecordFetcher:
    """Fetches the raw record for every identifier found in the index archives."""

    def __init__(
        self,
        client: httpx.Client,
        layout: HarvestLayout,
        config: HarvestConfig,
        *,
        selector: Optional[LineSelector] = None,
    ) -> None:
        self._client = client
        self._layout = layout
        self._config = config
        self._selector = selector or LineSelector.from_config(config.selection)

    def archives(self) -> List[Path]:
        index_dir = self._layout.index_dir
        if not index_dir.is_dir():
            return []
        return sorted(p for p in index_dir.rglob(self._config.selection.archive_glob) if p.is_file())

    def collect(self, archives: Sequence[Path]) -> List[Identifier]:
        """Union of identifiers across ``archives``; unreadable archives are skipped."""
        found: Set[Identifier] = set()
        for archive in archives:
            LOGGER.info("Processing: %s", archive.name)
            try:
                found.update(extract_identifiers(archive, self._selector))
            except (OSError, EOFError, zlib.error) as e:
                log_item_failure(LOGGER, STAGE, str(archive), e)
        return sorted(found)

    def plan(self, identifiers: Iterable[Identifier]) -> Tuple[List[Identifier], int]:
        """Split identifiers into ``(to_fetch, skipped_count)`` using the decision table."""
        to_fetch: List[Identifier] = []
        skipped = 0
        for identifier in identifiers:
            if self._layout.bucket_of(identifier) is not PairBucket.UNCLASSIFIED:
                skipped += 1
                continue
            state = self._layout.record_state(identifier)
            if state is RecordState.PRESENT:
                LOGGER.debug("Exist: %s", identifier)
                skipped += 1
                continue
            if state is RecordState.EMPTY:
                LOGGER.info("Exist: %s but file size is 0, retrying download", identifier)
            to_fetch.append(identifier)
        return to_fetch, skipped

    def fetch_one(self, identifier: Identifier) -> Tuple[ItemOutcome, int]:
        dest = self._layout.raw_path(identifier)
        url = self._config.endpoints.record_url.format(id=identifier)
        LOGGER.info("Download: %s", dest.name)
        try:
            result = fetch_to_file(
                self._client,
                url,
                dest,
                chunk_size=self._config.http.chunk_size_bytes,
                partial_prefix=PARTIAL,
            )
        except TransportError as e:
            log_item_failure(LOGGER, STAGE, identifier, e)
            return ItemOutcome.FAILED, 0

        if not result.ok:
            LOGGER.warning("HTTP %d for %s; body kept as-is", result.status, identifier)
        if result.bytes_written == 0:
            LOGGER.warning("Empty body for %s; will retry next run", identifier)
            return ItemOutcome.FAILED, 0
        return ItemOutcome.FETCHED, result.bytes_written

    def run(
        self,
        archives: Optional[Sequence[Path]] = None,
        *,
        identifiers: Optional[Iterable[Identifier]] = None,
        dry_run: bool = False,
        limit: Optional[int] = None,
    ) -> StageSummary:
        """Fetch missing or empty raw records.

        Args:
            archives: Archives to read (default: every match under the index dir)
            identifiers: Explicit identifiers; bypasses archive extraction
            dry_run: Log the plan without fetching
            limit: Fetch at most this many records

        Raises:
            FatalConfigError: If the downloads directory is unusable.
        """
        self._layout.ensure_dirs(self._layout.downloads_dir)
        sweep_partials(self._layout.downloads_dir, prefix=PARTIAL)

        if identifiers is None:
            identifiers = self.collect(self.archives() if archives is None else archives)
        else:
            identifiers = sorted({i for i in identifiers if is_safe_identifier(i)})

        summary = StageSummary(stage=STAGE, dry_run=dry_run)
        to_fetch, skipped = self.plan(identifiers)
        summary.counts[ItemOutcome.SKIPPED] += skipped

        limit = limit if limit is not None else self._config.limit
        if limit is not None:
            to_fetch = to_fetch[:limit]

        if dry_run:
            for identifier in to_fetch:
                LOGGER.info("Would download: %s", identifier)
                summary.add(identifier, ItemOutcome.PLANNED)
            return summary

        for identifier, outcome, written in run_items(
            STAGE, self.fetch_one, to_fetch, workers=self._config.workers
        ):
            summary.add(identifier, outcome, bytes_written=written)
        LOGGER.info(
            "Record fetch done: %d fetched, %d skipped, %d failed",
            summary.fetched,
            summary.skipped,
            summary.failed,
        )
        return summary
