"""Ordered fallback chains and bounded-concurrency batches."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterator, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Strategy = Tuple[str, Callable[[T], Optional[R]]]


def first_success(strategies: Sequence[Strategy], value: T) -> Optional[Tuple[str, R]]:
    """Try each strategy in order and return the first non-empty result.

    A strategy that raises is logged and treated like one that found nothing.
    """
    for name, strategy in strategies:
        try:
            result = strategy(value)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Strategy %s failed for %r: %s", name, value, exc)
            continue
        if result:
            return name, result
    return None


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    batch_size: int,
    delay_seconds: float = 0.0,
) -> Iterator[Tuple[T, Optional[R], Optional[BaseException]]]:
    """Run ``worker`` over ``items`` batch by batch.

    Each batch runs concurrently; outcomes are yielded in completion order as
    ``(item, result, error)``. The pause between batches is skipped after the
    last one.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = {executor.submit(worker, item): item for item in batch}
            for future in as_completed(futures):
                item = futures[future]
                error = future.exception()
                if error is not None:
                    yield item, None, error
                else:
                    yield item, future.result(), None

        if delay_seconds and start + batch_size < len(items):
            time.sleep(delay_seconds)
