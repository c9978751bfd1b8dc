"""
Bounded thread-pool fan-out for I/O-bound calls.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


def parallel_map(func: Callable[[T], R], items: List[T], max_workers: int) -> List[R]:
    """
    Apply ``func`` to every item with at most ``max_workers`` calls in flight.

    Results are returned in input order: result ``i`` belongs to ``items[i]``.
    ``func`` is expected to turn its own failures into return values; an
    exception escaping it propagates to the caller.

    Args:
        func: Function to apply to each item
        items: Items to process
        max_workers: Upper bound on concurrent calls

    Returns:
        List of results in the same order as ``items``.
    """
    if not items:
        return []

    if len(items) == 1 or max_workers <= 1:
        return [func(item) for item in items]

    workers = min(max_workers, len(items))
    logger.debug(f"Dispatching {len(items)} calls on {workers} threads")
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(func, items))
