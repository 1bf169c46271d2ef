"""Index Synchronizer: mirror the selected remote archives by declared size.

For every listing entry whose name matches the archive filter:

- local file exists with ``actual_size == declared_size`` → skip
- missing, or any other size (partial, corrupt, grown upstream) → fetch and
  overwrite

The size is not re-checked after a fetch. If the new file still disagrees with
the listing, the next run sees the mismatch and fetches again.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

import httpx

from .config import HarvestConfig
from .errors import FatalConfigError, SizeMismatchError, TransportError, log_item_failure
from .io_utils import sweep_partials
from .listing import HttpListingSource, ListingSource
from .net.download import fetch_to_file
from .net.retry import create_listing_retry_policy
from .state import HarvestLayout
from .summary import StageSummary
from .types import ItemOutcome, LocalFile, RemoteEntry
from .workers import run_items

LOGGER = logging.getLogger(__name__)

STAGE = "sync"


class IndexSynchronizer:
    """Keeps ``<index-dir>`` in step with the remote archive listing."""

    def __init__(
        self,
        client: httpx.Client,
        layout: HarvestLayout,
        config: HarvestConfig,
        *,
        listing: Optional[ListingSource] = None,
    ) -> None:
        self._client = client
        self._layout = layout
        self._config = config
        self._filter = re.compile(config.selection.archive_filter)
        self._listing = listing or HttpListingSource(
            client,
            config.endpoints.listing_url,
            config.selection.listing_pattern,
            retrying=create_listing_retry_policy(
                config.pacing.listing_max_attempts,
                config.pacing.listing_max_delay_s,
            ),
        )

    def select(self, entries: Iterable[RemoteEntry]) -> List[RemoteEntry]:
        """Entries whose name matches the archive filter, sorted by name."""
        return sorted(
            (entry for entry in entries if self._filter.search(entry.name)),
            key=lambda entry: entry.name,
        )

    def verify_local(self, entry: RemoteEntry) -> LocalFile:
        """Return the local observation for ``entry`` if it is synchronized.

        Raises:
            FileNotFoundError: If the local file is missing.
            SizeMismatchError: If it exists with a different size.
        """
        local = LocalFile.observe(self._layout.index_path(entry.name))
        if not local.exists:
            raise FileNotFoundError(str(local.path))
        if local.actual_size != entry.declared_size:
            raise SizeMismatchError(local.path, entry.declared_size, local.actual_size)
        return local

    def needs_fetch(self, entry: RemoteEntry) -> bool:
        try:
            self.verify_local(entry)
        except FileNotFoundError:
            return True
        except SizeMismatchError as e:
            LOGGER.info("Size mismatch (%d != %d): %s", e.actual, e.expected, entry.name)
            return True
        return False

    def plan(self, entries: Iterable[RemoteEntry]) -> Tuple[List[RemoteEntry], int]:
        """Split selected entries into ``(to_fetch, skipped_count)``; unsafe names are dropped."""
        to_fetch: List[RemoteEntry] = []
        skipped = 0
        for entry in self.select(entries):
            try:
                self._layout.index_path(entry.name)
            except ValueError as e:
                LOGGER.warning("%s", e)
                continue
            if self.needs_fetch(entry):
                to_fetch.append(entry)
            else:
                LOGGER.debug("Exist: %s", entry.name)
                skipped += 1
        return to_fetch, skipped

    def fetch_entry(self, entry: RemoteEntry) -> Tuple[ItemOutcome, int]:
        dest = self._layout.index_path(entry.name)
        url = self._config.endpoints.archive_url.format(name=entry.name)
        LOGGER.info("Download: %s", entry.name)
        try:
            result = fetch_to_file(
                self._client,
                url,
                dest,
                require_success=True,
                chunk_size=self._config.http.chunk_size_bytes,
            )
        except TransportError as e:
            log_item_failure(LOGGER, STAGE, entry.name, e)
            return ItemOutcome.FAILED, 0
        return ItemOutcome.FETCHED, result.bytes_written

    def run(
        self,
        entries: Optional[Sequence[RemoteEntry]] = None,
        *,
        dry_run: bool = False,
        limit: Optional[int] = None,
    ) -> StageSummary:
        """Synchronize the index directory.

        Args:
            entries: Listing to use instead of querying the listing source
            dry_run: Log the plan without fetching
            limit: Fetch at most this many entries

        Raises:
            FatalConfigError: If the index directory is unusable or the listing
                source is unreachable.
        """
        self._layout.ensure_dirs(self._layout.index_dir)
        sweep_partials(self._layout.index_dir)

        if entries is None:
            try:
                entries = self._listing.entries()
            except TransportError as e:
                raise FatalConfigError(f"Listing source unreachable: {e}") from e

        summary = StageSummary(stage=STAGE, dry_run=dry_run)
        to_fetch, skipped = self.plan(entries)
        summary.counts[ItemOutcome.SKIPPED] += skipped

        limit = limit if limit is not None else self._config.limit
        if limit is not None:
            to_fetch = to_fetch[:limit]

        if dry_run:
            for entry in to_fetch:
                LOGGER.info("Would download: %s (%d bytes)", entry.name, entry.declared_size)
                summary.add(entry.name, ItemOutcome.PLANNED)
            return summary

        for entry, outcome, written in run_items(
            STAGE,
            self.fetch_entry,
            to_fetch,
            workers=self._config.workers,
            label=lambda e: e.name,
        ):
            summary.add(entry.name, outcome, bytes_written=written)
        LOGGER.info(
            "Index sync done: %d fetched, %d skipped, %d failed",
            summary.fetched,
            summary.skipped,
            summary.failed,
        )
        return summary
