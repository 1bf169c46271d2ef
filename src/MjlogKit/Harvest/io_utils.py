# === NAVMAP v1 ===
# {
#   "module": "MjlogKit.Harvest.io_utils",
#   "purpose": "Atomic writes, partial-file sweeping, marker scans and pair moves",
#   "sections": [
#     {
#       "id": "atomic-write-stream",
#       "name": "atomic_write_stream",
#       "anchor": "function-atomic-write-stream",
#       "kind": "function"
#     },
#     {
#       "id": "sweep-partials",
#       "name": "sweep_partials",
#       "anchor": "function-sweep-partials",
#       "kind": "function"
#     },
#     {
#       "id": "contains-marker",
#       "name": "contains_marker",
#       "anchor": "function-contains-marker",
#       "kind": "function"
#     },
#     {
#       "id": "move-pair",
#       "name": "move_pair",
#       "anchor": "function-move-pair",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Filesystem primitives for the harvest stages.

**Purpose**
-----------
Every stage derives its to-do list from what is on disk, so the only thing
that has to be durable is the files themselves. This module keeps that
contract:

- :func:`atomic_write_stream` writes a byte stream through a temporary file in
  the destination directory, fsyncs it and renames it into place. A process
  killed mid-download leaves the previous file (or nothing) plus an orphaned
  ``.part-*.tmp`` file, never a truncated destination.
- :func:`sweep_partials` removes those orphaned temporaries at stage start.
- :func:`contains_marker` scans a document for a format marker without
  loading it into memory.
- :func:`move_pair` relocates a raw/converted pair into a bucket directory
  with ``os.replace`` (same filesystem, so each move is atomic).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Tuple

__all__ = [
    "PARTIAL_PREFIX",
    "PARTIAL_SUFFIX",
    "partial_prefix",
    "atomic_write_stream",
    "sweep_partials",
    "contains_marker",
    "move_pair",
]

logger = logging.getLogger(__name__)

PARTIAL_PREFIX = ".part-"
PARTIAL_SUFFIX = ".tmp"


def partial_prefix(stage: str) -> str:
    """Temp-file prefix owned by ``stage``, e.g. ``.part-fetch-``."""
    return f"{PARTIAL_PREFIX}{stage}-"


def _fsync_dir(directory: Path) -> None:
    dir_fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def atomic_write_stream(
    dest_path: Path, byte_iter: Iterable[bytes], *, prefix: str = PARTIAL_PREFIX
) -> int:
    """Write ``byte_iter`` to ``dest_path`` atomically.

    Args:
        dest_path: Final location. Parent directories are created if missing.
        byte_iter: Iterable yielding chunks of bytes, e.g.
            ``httpx.Response.iter_bytes()``.
        prefix: Temp-file prefix. Stages sharing a directory pass their own
            :func:`partial_prefix`.

    Returns:
        Number of bytes written.

    Raises:
        OSError: If file I/O fails (permission denied, disk full, ...).
        Exception: Anything raised by ``byte_iter`` propagates after the
            temporary file has been removed; ``dest_path`` is left untouched.
    """
    dest_dir = dest_path.parent
    dest_dir.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=dest_dir, prefix=prefix, suffix=PARTIAL_SUFFIX)
    bytes_written = 0

    try:
        with os.fdopen(fd, "wb") as f:
            for chunk in byte_iter:
                if chunk:
                    f.write(chunk)
                    bytes_written += len(chunk)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_name, dest_path)
        _fsync_dir(dest_dir)
        return bytes_written

    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def sweep_partials(directory: Path, *, prefix: str = PARTIAL_PREFIX) -> int:
    """Remove temporaries left behind by killed :func:`atomic_write_stream` calls.

    Only names starting with ``prefix`` are removed, so a stage sweeping its
    own prefix leaves another stage's in-flight temporaries alone.

    Returns:
        Number of files removed.
    """
    if not directory.is_dir():
        return 0

    removed = 0
    for candidate in directory.rglob(f"{prefix}*{PARTIAL_SUFFIX}"):
        try:
            candidate.unlink()
            removed += 1
        except FileNotFoundError:
            continue
    if removed:
        logger.info("Removed %d partial file(s) under %s", removed, directory)
    return removed


def contains_marker(path: Path, marker: bytes, *, chunk_size: int = 1 << 16) -> bool:
    """Return ``True`` if ``marker`` occurs anywhere in the file at ``path``.

    Reads in chunks, carrying ``len(marker) - 1`` bytes across chunk
    boundaries so split markers are still found. Missing files return ``False``.
    """
    if not marker:
        raise ValueError("marker must be non-empty")

    overlap = len(marker) - 1
    tail = b""
    try:
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    return False
                window = tail + chunk
                if marker in window:
                    return True
                tail = window[-overlap:] if overlap else b""
    except FileNotFoundError:
        return False


def move_pair(raw: Path, converted: Path, target_dir: Path) -> Tuple[Path, Path]:
    """Move a raw/converted pair into ``target_dir`` keeping their basenames.

    The raw document moves first: a crash between the two renames leaves the
    converted file behind in the source directory, which the classifier's
    reconcile pass completes on the next run.

    Returns:
        The new ``(raw, converted)`` paths.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    raw_dest = target_dir / raw.name
    converted_dest = target_dir / converted.name

    os.replace(raw, raw_dest)
    if converted.exists():
        os.replace(converted, converted_dest)
    else:
        converted_dest.touch()
    _fsync_dir(target_dir)
    return raw_dest, converted_dest
