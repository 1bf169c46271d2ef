"""Tenacity retry policy for stage-start requests.

Only the remote listing is retried in-process: it gates the whole
synchronizer run, so a transient failure there would otherwise abort the
stage. Per-item fetches are single-shot and self-heal on the
next run instead.

Example:
    >>> policy = create_listing_retry_policy(max_attempts=4, max_delay_seconds=30)
    >>> for attempt in policy:
    ...     with attempt:
    ...         text = fetch_text(client, url)
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential,
)

from ..errors import TransportError

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """Transport failures without a status, 429s and 5xx responses are retryable."""
    if not isinstance(exc, TransportError):
        return False
    if exc.status is None:
        return True
    return exc.status == 429 or exc.status >= 500


def create_listing_retry_policy(
    max_attempts: int = 4,
    max_delay_seconds: float = 30.0,
    *,
    wait_max_seconds: float = 8.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    """Create a Tenacity retry policy for the listing fetch.

    Args:
        max_attempts: Maximum number of attempts
        max_delay_seconds: Overall deadline measured from the first attempt
        wait_max_seconds: Cap for the full-jitter exponential backoff
        sleep: Sleep function (tests pass a no-op)

    Returns:
        Configured ``Retrying`` object; the last error is re-raised.
    """
    return Retrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts) | stop_after_delay(max_delay_seconds),
        wait=wait_random_exponential(multiplier=0.5, max=wait_max_seconds),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
