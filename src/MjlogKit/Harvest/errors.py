# === NAVMAP v1 ===
# {
#   "module": "MjlogKit.Harvest.errors",
#   "purpose": "Error taxonomy and structured failure logging for the harvest stages.",
#   "sections": [
#     {
#       "id": "harvesterror",
#       "name": "HarvestError",
#       "anchor": "class-harvesterror",
#       "kind": "class"
#     },
#     {
#       "id": "transporterror",
#       "name": "TransportError",
#       "anchor": "class-transporterror",
#       "kind": "class"
#     },
#     {
#       "id": "sizemismatcherror",
#       "name": "SizeMismatchError",
#       "anchor": "class-sizemismatcherror",
#       "kind": "class"
#     },
#     {
#       "id": "formatmismatcherror",
#       "name": "FormatMismatchError",
#       "anchor": "class-formatmismatcherror",
#       "kind": "class"
#     },
#     {
#       "id": "fatalconfigerror",
#       "name": "FatalConfigError",
#       "anchor": "class-fatalconfigerror",
#       "kind": "class"
#     },
#     {
#       "id": "get-actionable-error-message",
#       "name": "get_actionable_error_message",
#       "anchor": "function-get-actionable-error-message",
#       "kind": "function"
#     },
#     {
#       "id": "log-item-failure",
#       "name": "log_item_failure",
#       "anchor": "function-log-item-failure",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy and structured failure logging for the harvest stages.

Responsibilities
----------------
- Define the exception types shared by the three stages. Only
  :class:`FatalConfigError` is allowed to escape a stage; every other error is
  caught at the item boundary and turned into a retry (absent or zero-length
  file) or a quarantine decision.
- Translate HTTP status codes and transport failures into short remediation
  hints via :func:`get_actionable_error_message`.
- Centralise structured logging through :func:`log_item_failure` so that all
  per-item failures carry the same ``extra_fields`` payload.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

__all__ = (
    "HarvestError",
    "TransportError",
    "SizeMismatchError",
    "FormatMismatchError",
    "FatalConfigError",
    "get_actionable_error_message",
    "log_item_failure",
)

LOGGER = logging.getLogger(__name__)


class HarvestError(Exception):
    """Base class for all harvest pipeline errors."""


class TransportError(HarvestError):
    """Raised when a request times out, cannot connect, or returns a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status = status
        self.details = details or {}


class SizeMismatchError(HarvestError):
    """Raised when a local index archive does not match its declared remote size.

    Attributes:
        path: Local file that was inspected.
        expected: Size declared by the remote listing.
        actual: Size observed on disk.
    """

    def __init__(self, path: Path, expected: int, actual: int):
        super().__init__(f"Size mismatch for {path}: expected {expected} bytes, found {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class FormatMismatchError(HarvestError):
    """Raised when a document does not carry its expected format marker."""

    def __init__(self, path: Path, marker: str, *, role: str):
        super().__init__(f"{role} document {path.name} lacks format marker {marker!r}")
        self.path = path
        self.marker = marker
        self.role = role


class FatalConfigError(HarvestError):
    """Raised when a stage cannot start: bad config, unwritable directory, unreachable listing."""


def get_actionable_error_message(
    http_status: int | None,
    reason_code: str | None = None,
) -> tuple[str, str | None]:
    """Return a user-facing message and optional suggestion for a failure.

    Args:
        http_status: HTTP status code from the failed request, if any
        reason_code: Short machine-readable reason (``timeout``, ``connect`` ...)

    Returns:
        Tuple of ``(message, suggestion)``; ``suggestion`` may be ``None``.
    """

    if http_status == 404:
        return (
            "Resource not found (HTTP 404)",
            "The record may not exist yet on the remote archive; it will be retried next run.",
        )
    if http_status == 429:
        return (
            "Rate limit exceeded (HTTP 429)",
            "Increase pacing.convert_min_interval_ms or reduce the worker count.",
        )
    if http_status in (502, 503, 504):
        return (
            f"Service temporarily unavailable (HTTP {http_status})",
            "The remote site is overloaded; re-run the stage later.",
        )
    if http_status and http_status >= 400:
        return (f"HTTP error {http_status}", None)

    if reason_code == "timeout":
        return (
            "Request timed out",
            "Increase http.timeout_read_s or check network latency.",
        )
    if reason_code == "connect":
        return (
            "Failed to establish connection",
            "Check network connectivity, DNS resolution, or proxy configuration.",
        )
    if reason_code == "format":
        return ("Format marker missing", "Inspect the quarantined pair before requeueing it.")

    return ("Item failed", None)


def _reason_code(error: BaseException) -> str | None:
    if isinstance(error, FormatMismatchError):
        return "format"
    if isinstance(error, TransportError):
        return error.details.get("reason")
    return None


def log_item_failure(
    logger: logging.Logger,
    stage: str,
    item: str,
    error: BaseException,
    *,
    level: int = logging.WARNING,
) -> None:
    """Log one per-item failure with structured context.

    Args:
        logger: Logger instance to use for output
        stage: Stage name (``sync``, ``fetch``, ``classify``)
        item: Entry name or identifier that failed
        error: The exception caught at the item boundary
        level: Logging level for the primary message
    """

    status = error.status if isinstance(error, TransportError) else None
    message, suggestion = get_actionable_error_message(status, _reason_code(error))

    fields: dict[str, Any] = {
        "stage": stage,
        "item": item,
        "error_message": message,
        "exception_type": type(error).__name__,
        "exception_message": str(error),
    }
    if isinstance(error, TransportError) and error.url:
        fields["url"] = error.url
    if status is not None:
        fields["http_status"] = status

    logger.log(level, "%s failed for %s: %s", stage, item, error, extra={"extra_fields": fields})
    if suggestion:
        logger.debug("Suggestion: %s", suggestion, extra={"extra_fields": {"item": item}})
