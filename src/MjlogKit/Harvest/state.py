# === NAVMAP v1 ===
# {
#   "module": "MjlogKit.Harvest.state",
#   "purpose": "Filesystem layout and per-item status derived on read",
#   "sections": [
#     {
#       "id": "harvestlayout",
#       "name": "HarvestLayout",
#       "anchor": "class-harvestlayout",
#       "kind": "class"
#     },
#     {
#       "id": "statusreport",
#       "name": "StatusReport",
#       "anchor": "class-statusreport",
#       "kind": "class"
#     },
#     {
#       "id": "scan-status",
#       "name": "scan_status",
#       "anchor": "function-scan-status",
#       "kind": "function"
#     },
#     {
#       "id": "requeue-quarantined",
#       "name": "requeue_quarantined",
#       "anchor": "function-requeue-quarantined",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Filesystem layout and per-item status derived on read.

The filesystem is the pipeline's only state store. Nothing in this module
caches: every query stats the disk again, so a stage restarted after a crash
sees exactly what the previous process left behind.

Layout (names configurable through :class:`~MjlogKit.Harvest.config.LayoutConfig`)::

    <root>/index/<entry-name>            synchronized archives
    <root>/downloads/<id>.xml            raw records
    <root>/downloads/<id>.json           converted artifacts
    <root>/trusted/<id>.{xml,json}       pairs that passed validation
    <root>/quarantined/<id>.{xml,json}   pairs that failed validation
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from .config import HarvestConfig, LayoutConfig
from .errors import FatalConfigError
from .types import Identifier, PairBucket, RecordState, is_safe_identifier

__all__ = [
    "HarvestLayout",
    "StatusReport",
    "scan_status",
    "requeue_quarantined",
]

LOGGER = logging.getLogger(__name__)


class HarvestLayout:
    """Maps entry names and identifiers to paths under a working root."""

    def __init__(self, root: Path, layout: LayoutConfig | None = None) -> None:
        layout = layout or LayoutConfig()
        self.root = Path(root)
        self.index_dir = self.root / layout.index_dir
        self.downloads_dir = self.root / layout.downloads_dir
        self.trusted_dir = self.root / layout.trusted_dir
        self.quarantined_dir = self.root / layout.quarantined_dir
        self.raw_suffix = layout.raw_suffix
        self.converted_suffix = layout.converted_suffix

    @classmethod
    def from_config(cls, config: HarvestConfig, root: Optional[Path] = None) -> "HarvestLayout":
        return cls(Path(root) if root is not None else Path(config.root), config.layout)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def index_path(self, name: str) -> Path:
        """Return the local path for a listing entry name.

        Raises:
            ValueError: If ``name`` is absolute or escapes the index directory.
        """
        parts = PurePosixPath(name).parts
        if not parts or PurePosixPath(name).is_absolute() or ".." in parts:
            raise ValueError(f"Refusing unsafe entry name {name!r}")
        return self.index_dir.joinpath(*parts)

    def bucket_dir(self, bucket: PairBucket) -> Path:
        if bucket is PairBucket.TRUSTED:
            return self.trusted_dir
        if bucket is PairBucket.QUARANTINED:
            return self.quarantined_dir
        return self.downloads_dir

    def raw_path(self, identifier: Identifier, bucket: PairBucket = PairBucket.UNCLASSIFIED) -> Path:
        if not is_safe_identifier(identifier):
            raise ValueError(f"Refusing unsafe identifier {identifier!r}")
        return self.bucket_dir(bucket) / f"{identifier}{self.raw_suffix}"

    def converted_path(
        self, identifier: Identifier, bucket: PairBucket = PairBucket.UNCLASSIFIED
    ) -> Path:
        if not is_safe_identifier(identifier):
            raise ValueError(f"Refusing unsafe identifier {identifier!r}")
        return self.bucket_dir(bucket) / f"{identifier}{self.converted_suffix}"

    # ------------------------------------------------------------------
    # Derived status
    # ------------------------------------------------------------------

    def record_state(self, identifier: Identifier) -> RecordState:
        """State of the unclassified raw record for ``identifier``."""
        return RecordState.of(self.raw_path(identifier))

    def bucket_of(self, identifier: Identifier) -> PairBucket:
        """Which bucket currently holds the pair (by its raw document)."""
        if self.raw_path(identifier, PairBucket.TRUSTED).exists():
            return PairBucket.TRUSTED
        if self.raw_path(identifier, PairBucket.QUARANTINED).exists():
            return PairBucket.QUARANTINED
        return PairBucket.UNCLASSIFIED

    def identifiers_in(self, bucket: PairBucket, *, suffix: Optional[str] = None) -> List[str]:
        """Sorted identifiers with a file of ``suffix`` (default: raw) in ``bucket``."""
        directory = self.bucket_dir(bucket)
        suffix = suffix or self.raw_suffix
        if not directory.is_dir():
            return []
        return sorted(
            p.name[: -len(suffix)]
            for p in directory.iterdir()
            if p.is_file() and p.name.endswith(suffix) and is_safe_identifier(p.name[: -len(suffix)])
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def ensure_dirs(self, *directories: Path) -> None:
        """Create ``directories`` (idempotent) and verify they are writable.

        Raises:
            FatalConfigError: If a directory cannot be created or written.
        """
        for directory in directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FatalConfigError(f"Cannot create directory {directory}: {e}") from e
            if not os.access(directory, os.W_OK | os.X_OK):
                raise FatalConfigError(f"Directory {directory} is not writable")


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------


@dataclass
class StatusReport:
    """Snapshot of pipeline progress computed from the filesystem."""

    archives: int = 0
    records: Dict[RecordState, int] = field(
        default_factory=lambda: {state: 0 for state in RecordState if state is not RecordState.ABSENT}
    )
    buckets: Dict[PairBucket, int] = field(
        default_factory=lambda: {PairBucket.TRUSTED: 0, PairBucket.QUARANTINED: 0}
    )
    empty_files: List[Path] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "archives": self.archives,
            "records": {state.value: count for state, count in self.records.items()},
            "buckets": {bucket.value: count for bucket, count in self.buckets.items()},
            "empty_files": [str(p) for p in self.empty_files],
        }


def scan_status(layout: HarvestLayout, *, archive_glob: str = "*") -> StatusReport:
    """Count archives, unclassified records and bucketed pairs; list zero-length files."""

    report = StatusReport()
    if layout.index_dir.is_dir():
        report.archives = sum(1 for p in layout.index_dir.rglob(archive_glob) if p.is_file())

    for identifier in layout.identifiers_in(PairBucket.UNCLASSIFIED):
        state = layout.record_state(identifier)
        report.records[state] = report.records.get(state, 0) + 1

    for bucket in (PairBucket.TRUSTED, PairBucket.QUARANTINED):
        report.buckets[bucket] = len(layout.identifiers_in(bucket))

    for directory in (layout.index_dir, layout.downloads_dir):
        if directory.is_dir():
            report.empty_files.extend(
                sorted(p for p in directory.rglob("*") if p.is_file() and p.stat().st_size == 0)
            )
    return report


def requeue_quarantined(
    layout: HarvestLayout, identifiers: Optional[Iterable[Identifier]] = None
) -> List[Identifier]:
    """Move quarantined pairs back to the downloads directory for reclassification.

    The raw record is restored; the converted artifact is discarded so the next
    ``classify`` run fetches a fresh one.

    Args:
        layout: Harvest layout
        identifiers: Subset to requeue; defaults to every quarantined pair

    Returns:
        Identifiers that were requeued, sorted.
    """
    wanted = (
        sorted(set(identifiers))
        if identifiers is not None
        else layout.identifiers_in(PairBucket.QUARANTINED)
    )
    layout.ensure_dirs(layout.downloads_dir)

    requeued: List[Identifier] = []
    for identifier in wanted:
        raw = layout.raw_path(identifier, PairBucket.QUARANTINED)
        if not raw.exists():
            LOGGER.warning("Not quarantined, skipping requeue: %s", identifier)
            continue
        os.replace(raw, layout.raw_path(identifier))
        layout.converted_path(identifier, PairBucket.QUARANTINED).unlink(missing_ok=True)
        requeued.append(identifier)
        LOGGER.info("Requeued: %s", identifier)
    return requeued
