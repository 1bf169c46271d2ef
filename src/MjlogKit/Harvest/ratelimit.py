# === NAVMAP v1 ===
# {
#   "module": "MjlogKit.Harvest.ratelimit",
#   "purpose": "Process-wide minimum-interval gate built on pyrate-limiter.",
#   "sections": [
#     {
#       "id": "minintervalgate",
#       "name": "MinIntervalGate",
#       "anchor": "class-minintervalgate",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Process-wide minimum-interval gate built on pyrate-limiter.

The conversion endpoint expects requests spaced at least a fixed interval
apart. That spacing is global: every worker thread shares one
:class:`MinIntervalGate`, so adding workers never raises the request rate.

The gate is a single-slot sliding window (``Rate(1, interval)``) with no burst
allowance. Callers block in :meth:`MinIntervalGate.acquire` until the previous
admission is at least ``interval_ms`` old.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from pyrate_limiter import Limiter, Rate

LOGGER = logging.getLogger(__name__)


class MinIntervalGate:
    """Single-slot timed gate shared by all callers of one endpoint."""

    def __init__(
        self,
        interval_ms: int,
        *,
        name: str = "convert",
        poll_interval_s: float = 0.005,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")
        self.interval_ms = interval_ms
        self._name = name
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep
        self._now = now
        self._lock = threading.Lock()
        # pyrate-limiter stamps items with an integer-millisecond clock; the
        # extra millisecond keeps real spacing at or above interval_ms.
        self._limiter = (
            Limiter(Rate(1, interval_ms + 1), raise_when_fail=False, max_delay=None)
            if interval_ms > 0
            else None
        )

    def acquire(self) -> int:
        """Block until admitted; return the milliseconds spent waiting."""
        if self._limiter is None:
            return 0

        start = self._now()
        # Only one waiter probes the limiter at a time.
        with self._lock:
            while not self._limiter.try_acquire(self._name, weight=1):
                self._sleep(self._poll_interval_s)
        waited_ms = int((self._now() - start) * 1000)
        if waited_ms:
            LOGGER.debug("Gate %s admitted after %d ms", self._name, waited_ms)
        return waited_ms

    def __enter__(self) -> "MinIntervalGate":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None
