"""Bounded worker pool used by every stage.

Items are independent (their output paths are keyed 1:1 by entry name or
identifier), so the pool only has to bound concurrency and keep one item's
failure from reaching the others.
"""

from __future__ import annotations

import logging
from concurrent import futures
from typing import Callable, Iterable, Iterator, Optional, Tuple, TypeVar

from .errors import FatalConfigError, log_item_failure
from .types import ItemOutcome

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


def create_executor(workers: int) -> Tuple[Optional[futures.Executor], bool]:
    """
    Return a thread pool for ``workers > 1``.

    Returns:
        Tuple of (executor, needs_shutdown). ``(None, False)`` means run
        inline in the calling thread.
    """
    if workers <= 1:
        return None, False
    return futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="harvest"), True


def _guarded(
    stage: str,
    fn: Callable[[T], Tuple[ItemOutcome, int]],
    item: T,
    label: Callable[[T], str],
) -> Tuple[ItemOutcome, int]:
    try:
        return fn(item)
    except FatalConfigError:
        raise
    except Exception as e:  # item boundary: never propagate to the rest of the run
        log_item_failure(LOGGER, stage, label(item), e, level=logging.ERROR)
        return ItemOutcome.FAILED, 0


def run_items(
    stage: str,
    fn: Callable[[T], Tuple[ItemOutcome, int]],
    items: Iterable[T],
    *,
    workers: int = 1,
    label: Callable[[T], str] = str,
) -> Iterator[Tuple[T, ItemOutcome, int]]:
    """
    Apply ``fn`` to every item, yielding ``(item, outcome, bytes_written)``.

    ``fn`` returns ``(outcome, bytes_written)``. Any exception other than
    :class:`FatalConfigError` is logged and reported as ``FAILED`` for that
    item only. Sequential runs yield in input order; pooled runs yield in
    completion order.
    """
    executor, needs_shutdown = create_executor(workers)
    if executor is None:
        for item in items:
            outcome, written = _guarded(stage, fn, item, label)
            yield item, outcome, written
        return

    try:
        pending = {executor.submit(_guarded, stage, fn, item, label): item for item in items}
        for future in futures.as_completed(pending):
            outcome, written = future.result()
            yield pending[future], outcome, written
    finally:
        if needs_shutdown:
            executor.shutdown(wait=True, cancel_futures=True)
