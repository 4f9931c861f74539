# app/sync/components/batch.py
# ==========================================================
# Chunked writes with per-chunk retry (fail-forward)
# ==========================================================
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from app.config import settings
from app.sync.components.util import chunked, maybe_await, notify

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

ChunkOperation = Callable[[List[T]], Awaitable[Any]]


@dataclass
class BatchReport:
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    def merge(self, other: "BatchReport") -> "BatchReport":
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.errors.extend(other.errors)
        return self


@dataclass
class ChunkOutcome:
    """
    Per-item result of one chunk attempt.

    `retry` holds the (item, error) pairs that failed and should be attempted
    again; everything else in the chunk is done. `unapplied` counts items that
    can never be applied (nothing to retry) and `note` says why.
    """
    retry: List[Tuple[Any, str]] = field(default_factory=list)
    unapplied: int = 0
    note: Optional[str] = None


def _failure_of(result: Any) -> Optional[str]:
    """A chunk operation fails by raising or by returning something with ok=False."""
    if result is None or result is True:
        return None
    if result is False:
        return "operation returned False"
    ok = getattr(result, "ok", None)
    if ok is None and isinstance(result, dict):
        ok = result.get("ok")
    if ok is False:
        err = getattr(result, "error", None)
        if err is None and isinstance(result, dict):
            err = result.get("error")
        return str(err or "operation rejected the chunk")
    return None


async def apply_chunked(
    items: Sequence[T],
    chunk_size: int | None,
    operation: ChunkOperation,
    *,
    max_attempts: int | None = None,
    backoff_base: float | None = None,
    chunk_delay: float | None = None,
    label: str = "write",
    on_progress: Optional[Callable[[dict], Any]] = None,
) -> BatchReport:
    """
    Run `operation` over fixed-size chunks of `items`, in order.

    Each chunk gets up to `max_attempts` tries with a linear backoff of
    attempt * backoff_base seconds. A chunk that never succeeds counts its full
    size as failed and adds one error line; later chunks still run. An
    operation that returns a ChunkOutcome reports items one by one: only the
    items it hands back in `retry` are attempted again, and each item still
    failing at the end adds its own error line.
    succeeded + failed always equals len(items).
    """
    size = chunk_size or settings.SYNC_CHUNK_SIZE
    attempts = max(1, max_attempts if max_attempts is not None else settings.SYNC_MAX_ATTEMPTS)
    backoff = settings.SYNC_BACKOFF_BASE if backoff_base is None else backoff_base
    delay = settings.SYNC_CHUNK_DELAY if chunk_delay is None else chunk_delay

    report = BatchReport()
    chunks = list(chunked(items, size))
    total = len(items)

    for index, chunk in enumerate(chunks, start=1):
        pending: List[Any] = list(chunk)
        item_errors: List[str] = []
        last_error: Optional[str] = None
        unapplied = 0
        notes: List[str] = []

        for attempt in range(1, attempts + 1):
            try:
                result = await maybe_await(operation(pending))
            except Exception as e:
                last_error, item_errors = f"{type(e).__name__}: {e}", []
            else:
                if isinstance(result, ChunkOutcome):
                    unapplied += result.unapplied
                    if result.note:
                        notes.append(result.note)
                    pending = [item for item, _ in result.retry]
                    item_errors = [err for _, err in result.retry]
                    last_error = None
                else:
                    last_error, item_errors = _failure_of(result), []
                    if last_error is None:
                        pending = []
            if not pending:
                break
            if attempt < attempts:
                wait = attempt * backoff
                logger.warning(
                    "[BATCH] %s chunk %s/%s failed (attempt %s/%s): %s; retrying in %.1fs",
                    label, index, len(chunks), attempt, attempts,
                    last_error or f"{len(pending)} items rejected", wait,
                )
                if wait:
                    await asyncio.sleep(wait)

        failed = unapplied + len(pending)
        report.succeeded += len(chunk) - failed
        report.failed += failed
        msgs = [f"{label}: chunk {index}: {note}" for note in notes]
        if item_errors:
            msgs.extend(f"{label}: chunk {index}: {err} (failed after {attempts} attempts)" for err in item_errors)
        elif pending:
            msgs.append(f"{label}: chunk {index} ({len(pending)} items) failed after {attempts} attempts: {last_error}")
        for msg in msgs:
            report.errors.append(msg)
            logger.error("[BATCH] %s", msg)

        await notify(on_progress, {"phase": label, "done": report.attempted, "total": total,
                                   "succeeded": report.succeeded, "failed": report.failed})

        if delay and index < len(chunks):
            await asyncio.sleep(delay)

    return report
