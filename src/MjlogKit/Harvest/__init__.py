"""Public API for the MjlogKit game-record harvester.

The harvester runs three independent, resumable stages over one working
directory:

1. :class:`IndexSynchronizer` mirrors the remote archive listing by declared size.
2. :class:`RecordFetcher` extracts identifiers from the archives and fetches
   each raw record.
3. :class:`PairClassifier` fetches a converted artifact per record, checks
   both format markers and files the pair under ``trusted/`` or
   ``quarantined/``.

Every stage derives its to-do list from the filesystem, so re-running after a
crash, or at any later time, only performs the work that is still missing.
"""

from __future__ import annotations

from .classify import MarkerCheck, PairClassifier
from .config import HarvestConfig, load_config
from .errors import (
    FatalConfigError,
    FormatMismatchError,
    HarvestError,
    SizeMismatchError,
    TransportError,
)
from .extract import LineSelector, RecordFetcher, extract_identifiers, select_identifiers
from .listing import HttpListingSource, ListingSource, StaticListingSource, parse_listing
from .ratelimit import MinIntervalGate
from .state import HarvestLayout, StatusReport, requeue_quarantined, scan_status
from .summary import StageSummary
from .sync import IndexSynchronizer
from .types import (
    ClassifiedPair,
    Identifier,
    ItemOutcome,
    LocalFile,
    PairBucket,
    RecordState,
    RemoteEntry,
)

__version__ = "0.3.0"

__all__ = [
    "__version__",
    # Stages
    "IndexSynchronizer",
    "RecordFetcher",
    "PairClassifier",
    # Selection
    "LineSelector",
    "MarkerCheck",
    "select_identifiers",
    "extract_identifiers",
    "ListingSource",
    "StaticListingSource",
    "HttpListingSource",
    "parse_listing",
    # State
    "HarvestLayout",
    "StatusReport",
    "scan_status",
    "requeue_quarantined",
    "StageSummary",
    "MinIntervalGate",
    # Config
    "HarvestConfig",
    "load_config",
    # Types
    "Identifier",
    "RemoteEntry",
    "LocalFile",
    "RecordState",
    "PairBucket",
    "ItemOutcome",
    "ClassifiedPair",
    # Errors
    "HarvestError",
    "TransportError",
    "SizeMismatchError",
    "FormatMismatchError",
    "FatalConfigError",
]
