# app/sync/components/util.py
from __future__ import annotations

import inspect
from datetime import datetime, timezone
from typing import Iterator, List, Sequence, TypeVar

T = TypeVar("T")


async def maybe_await(x):
    if inspect.isawaitable(x):
        return await x
    return x


async def notify(callback, event: dict) -> None:
    """Call an optional sync-or-async progress callback."""
    if callback is None:
        return
    await maybe_await(callback(event))


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
