"""Ordered fan-out of independent work items."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def resolve_workers(num_items: int, max_workers: int | None) -> int:
    """Return the worker count: all CPUs when unset, never more than items."""

    if num_items <= 0:
        return 1
    if max_workers is None:
        return max(1, min(os.cpu_count() or 1, num_items))
    return max(1, min(int(max_workers), num_items))


def run_ordered(
    items: Iterable[T],
    handler: Callable[[T], R],
    *,
    max_workers: int | None = 1,
) -> List[R]:
    """Apply ``handler`` to every item and return results in item order.

    Items must not share mutable state; every handler call owns its data.
    """

    items = list(items)
    if not items:
        return []
    workers = resolve_workers(len(items), max_workers)
    if workers == 1:
        return [handler(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(handler, items))


__all__ = ["resolve_workers", "run_ordered"]
