"""Concurrent processing of independent per-file work items."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Hashable, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


class OverlappingTargetsError(ValueError):
    """Raised when two work items would write the same target."""


def ensure_disjoint(items: Sequence[ItemT], key: Callable[[ItemT], Hashable]) -> None:
    """Raise ``OverlappingTargetsError`` when ``key`` repeats across ``items``."""
    seen: set[Hashable] = set()
    duplicates: list[str] = []
    for item in items:
        value = key(item)
        if value in seen:
            duplicates.append(str(value))
        seen.add(value)
    if duplicates:
        raise OverlappingTargetsError(f"Items share target path(s): {', '.join(sorted(set(duplicates)))}")


def fan_out(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], ResultT],
    *,
    key: Callable[[ItemT], Hashable],
    max_workers: int | None = None,
) -> list[ResultT]:
    """Run ``worker`` over ``items`` concurrently and return results in submission order.

    Every submitted item runs to completion before this returns. If any worker
    raised, the first such exception in submission order is re-raised.
    """
    ensure_disjoint(items, key)
    if not items:
        return []

    workers = max(1, min(len(items), max_workers or len(items)))
    LOGGER.debug("Fanning out %d item(s) over %d worker(s)", len(items), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mender") as executor:
        futures: list[Future[ResultT]] = [executor.submit(worker, item) for item in items]
        wait(futures)

    return [future.result() for future in futures]


__all__ = ["OverlappingTargetsError", "ensure_disjoint", "fan_out"]
