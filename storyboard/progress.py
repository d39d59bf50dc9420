"""Batch progress reporting for parallel fan-out operations."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from storyboard.busy import BusyTracker, GlobalFlag
from storyboard.models import BatchProgress

logger = logging.getLogger(__name__)

T = TypeVar("T")

BATCH_FAILURE_MESSAGE = "Đã xảy ra lỗi trong quá trình xử lý hàng loạt {label}."


def format_duration(seconds: float | None) -> str:
    """Format seconds as ``MM:SS``; invalid input gives ``--:--``."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "--:--"
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    return f"{minutes:02d}:{remaining:02d}"


class BatchReporter:
    """Runs an operation over many items and tracks aggregate progress.

    All items are attempted: a failing item is logged and counted as
    completed, never aborting its siblings. ``max_concurrency`` bounds the
    number of in-flight operations; ``None`` starts every item at once.
    """

    def __init__(
        self,
        busy: BusyTracker,
        on_error: Callable[[str], None] | None = None,
        max_concurrency: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
        self._busy = busy
        self._on_error = on_error
        self.max_concurrency = max_concurrency
        self._clock = clock
        self._progress: BatchProgress | None = None
        self._subscribers: list[Callable[[BatchProgress | None], None]] = []

    @property
    def progress(self) -> BatchProgress | None:
        return self._progress

    def subscribe(self, callback: Callable[[BatchProgress | None], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, progress: BatchProgress | None) -> None:
        self._progress = progress
        for callback in list(self._subscribers):
            callback(progress)

    async def run_batch(
        self,
        key: str | GlobalFlag,
        label: str,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[Any]],
    ) -> None:
        """Run ``operation`` for every item concurrently.

        Args:
            key: Global busy flag held while the batch runs.
            label: Human-readable task label shown with the progress.
            items: Items to process; an empty sequence is a no-op.
            operation: Coroutine function applied to each item.
        """
        total = len(items)
        if total == 0:
            return

        start_time = self._clock()
        completed = 0
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        def item_done() -> None:
            nonlocal completed
            completed += 1
            elapsed = self._clock() - start_time
            eta = round((total - completed) * (elapsed / completed))
            if self._progress is not None:
                self._publish(replace(self._progress, completed=completed, eta=eta))

        async def run_one(item: T) -> None:
            try:
                if semaphore is None:
                    await operation(item)
                else:
                    async with semaphore:
                        await operation(item)
            except Exception:
                logger.exception("Batch operation '%s' failed for item %r", label, item)
            finally:
                item_done()

        logger.info("Starting batch '%s': %d items", label, total)
        async with self._busy.global_busy(key):
            self._publish(BatchProgress(total=total, task=label, start_time=start_time))
            try:
                await asyncio.gather(*(run_one(item) for item in items))
            except Exception:
                logger.exception("Batch '%s' failed", label)
                if self._on_error is not None:
                    self._on_error(BATCH_FAILURE_MESSAGE.format(label=label))
            finally:
                self._publish(None)
        logger.info("Batch '%s' finished: %d/%d", label, completed, total)
