# === NAVMAP v1 ===
# {
#   "module": "MjlogKit.Harvest.net.download",
#   "purpose": "Streaming GET helpers that persist bodies atomically.",
#   "sections": [
#     {
#       "id": "fetchresult",
#       "name": "FetchResult",
#       "anchor": "class-fetchresult",
#       "kind": "class"
#     },
#     {
#       "id": "fetch-to-file",
#       "name": "fetch_to_file",
#       "anchor": "function-fetch-to-file",
#       "kind": "function"
#     },
#     {
#       "id": "fetch-text",
#       "name": "fetch_text",
#       "anchor": "function-fetch-text",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Streaming GET helpers for the harvest stages.

All network failures surface as :class:`~MjlogKit.Harvest.errors.TransportError`
so the stages deal with one exception type. Bodies are persisted through
:func:`~MjlogKit.Harvest.io_utils.atomic_write_stream`; a failed or
interrupted transfer never replaces the destination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from tenacity import Retrying

from ..errors import TransportError
from ..io_utils import PARTIAL_PREFIX, atomic_write_stream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a completed transfer."""

    url: str
    path: Path
    status: int
    bytes_written: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _translate(exc: httpx.HTTPError, url: str) -> TransportError:
    if isinstance(exc, httpx.TimeoutException):
        reason = "timeout"
    elif isinstance(exc, httpx.ConnectError):
        reason = "connect"
    else:
        reason = "transport"
    return TransportError(f"{reason} error for {url}: {exc}", url=url, details={"reason": reason})


def fetch_to_file(
    client: httpx.Client,
    url: str,
    dest: Path,
    *,
    require_success: bool = False,
    chunk_size: int = 1 << 16,
    partial_prefix: str = PARTIAL_PREFIX,
) -> FetchResult:
    """
    Stream ``url`` into ``dest``.

    Args:
        client: HTTPX client
        url: URL to download
        dest: Destination file path (parents are created)
        require_success: When ``True`` a non-2xx response raises before anything
            is written. When ``False`` the body is written whatever the status
            and the caller inspects :attr:`FetchResult.status`.
        chunk_size: Stream chunk size
        partial_prefix: Temp-file prefix of the calling stage

    Returns:
        FetchResult describing the completed transfer

    Raises:
        TransportError: On timeouts, connection failures, broken streams, or
            (with ``require_success``) non-2xx responses.
    """
    try:
        with client.stream("GET", url) as resp:
            if require_success and not resp.is_success:
                raise TransportError(
                    f"HTTP {resp.status_code} for {url}",
                    url=url,
                    status=resp.status_code,
                    details={"reason": "http_status"},
                )
            written = atomic_write_stream(
                dest, resp.iter_bytes(chunk_size=chunk_size), prefix=partial_prefix
            )
            status = resp.status_code
    except httpx.HTTPError as e:
        raise _translate(e, url) from e

    logger.debug("Fetched %s -> %s (%d bytes, HTTP %d)", url, dest, written, status)
    return FetchResult(url=url, path=dest, status=status, bytes_written=written)


def fetch_text(
    client: httpx.Client,
    url: str,
    *,
    retrying: Optional[Retrying] = None,
) -> str:
    """
    GET ``url`` and return its decoded body, requiring a 2xx status.

    Args:
        client: HTTPX client
        url: URL to request
        retrying: Optional Tenacity controller wrapping the request

    Raises:
        TransportError: When the request (after any retries) fails.
    """

    def _once() -> str:
        try:
            resp = client.get(url)
        except httpx.HTTPError as e:
            raise _translate(e, url) from e
        if not resp.is_success:
            raise TransportError(
                f"HTTP {resp.status_code} for {url}",
                url=url,
                status=resp.status_code,
                details={"reason": "http_status"},
            )
        return resp.text

    if retrying is None:
        return _once()

    for attempt in retrying:
        with attempt:
            text = _once()
    return text
