"""Core value types shared across the harvest stages."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Tuple

__all__ = [
    "Identifier",
    "RemoteEntry",
    "LocalFile",
    "RecordState",
    "PairBucket",
    "ClassifiedPair",
    "ItemOutcome",
    "is_safe_identifier",
]

Identifier = str


@dataclass(frozen=True)
class RemoteEntry:
    """One ``(name, size)`` pair from the remote archive listing."""

    name: str
    declared_size: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("RemoteEntry.name must be non-empty")
        if self.declared_size < 0:
            raise ValueError(f"declared_size must be >= 0, got {self.declared_size}")


@dataclass(frozen=True)
class LocalFile:
    """Snapshot of a file as observed on disk right now."""

    path: Path
    actual_size: int
    exists: bool

    @classmethod
    def observe(cls, path: Path) -> "LocalFile":
        """Stat ``path`` and return a fresh observation (missing files report size 0)."""

        try:
            stat = path.stat()
        except FileNotFoundError:
            return cls(path=path, actual_size=0, exists=False)
        return cls(path=path, actual_size=stat.st_size, exists=path.is_file())


class RecordState(Enum):
    """Per-file state derived from the filesystem on every read."""

    ABSENT = "absent"
    EMPTY = "empty"
    PRESENT = "present"

    @classmethod
    def of(cls, path: Path) -> "RecordState":
        local = LocalFile.observe(path)
        if not local.exists:
            return cls.ABSENT
        if local.actual_size == 0:
            return cls.EMPTY
        return cls.PRESENT


class PairBucket(Enum):
    """Classification bucket for a raw/converted pair."""

    TRUSTED = "trusted"
    QUARANTINED = "quarantined"
    UNCLASSIFIED = "unclassified"


class ItemOutcome(Enum):
    """Result of processing one item within a stage run."""

    FETCHED = "fetched"
    SKIPPED = "skipped"
    FAILED = "failed"
    PLANNED = "planned"
    TRUSTED = "trusted"
    QUARANTINED = "quarantined"


@dataclass(frozen=True)
class ClassifiedPair:
    """Terminal classification of one identifier's pair."""

    identifier: Identifier
    bucket: PairBucket
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def trusted(self) -> bool:
        return self.bucket is PairBucket.TRUSTED


def is_safe_identifier(token: str) -> bool:
    """Return ``True`` when ``token`` can be used verbatim as a file basename."""

    if not token or token in (".", ".."):
        return False
    if "/" in token or "\\" in token or "\x00" in token:
        return False
    if os.sep in token or (os.altsep and os.altsep in token):
        return False
    return not token.startswith(".")
