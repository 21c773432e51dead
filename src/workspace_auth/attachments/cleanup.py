"""Adaptive cleanup timer for the attachment metadata index.

The sweep interval tightens while the index grows and relaxes while it is
idle:

- growth since the last notification: ``interval = max(base, interval * 0.75)``;
  at 90% of capacity a sweep runs immediately and the timer restarts.
- no growth: ``interval = min(max, interval * 1.25)``.
- a sweep slower than 100 ms stretches the interval by 1.5 (capped at max).

Sweeps closer together than half the base interval are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from workspace_auth.attachments.index import AttachmentMetadataIndex
from workspace_auth.clock import Clock, epoch_ms
from workspace_auth.core.metrics import observe_cleanup_duration

logger = logging.getLogger(__name__)

BASE_INTERVAL_MS = 5 * 60 * 1000
MAX_INTERVAL_MS = 60 * 60 * 1000
SLOW_CLEANUP_MS = 100.0
NEAR_CAPACITY_RATIO = 0.9

GROWTH_FACTOR = 0.75
IDLE_FACTOR = 1.25
SLOW_FACTOR = 1.5


class AttachmentCleanupScheduler:
    """Runs :meth:`AttachmentMetadataIndex.clean_expired` on a self-adjusting timer."""

    def __init__(
        self,
        index: AttachmentMetadataIndex,
        *,
        base_interval_ms: int = BASE_INTERVAL_MS,
        max_interval_ms: int = MAX_INTERVAL_MS,
        clock: Clock = epoch_ms,
        perf_counter: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._index = index
        self._base_interval_ms = base_interval_ms
        self._max_interval_ms = max_interval_ms
        self._clock = clock
        self._perf_counter = perf_counter

        self._current_interval_ms: float = base_interval_ms
        self._last_cleanup_ms: int | None = None
        self._last_index_size = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def current_interval_ms(self) -> float:
        return self._current_interval_ms

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Run an initial sweep and start the timer task."""
        if self.running:
            logger.warning("Attachment cleanup scheduler already running")
            return
        self._last_index_size = self._index.size
        self.run_cleanup()
        self._schedule()
        logger.info(
            "Started attachment cleanup scheduler (interval=%.0fms)", self._current_interval_ms
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Attachment cleanup scheduler stopped")

    def reset(self) -> None:
        """Restore the initial interval and forget sweep history (does not stop the timer)."""
        self._current_interval_ms = self._base_interval_ms
        self._last_cleanup_ms = None
        self._last_index_size = 0

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def notify_activity(self) -> None:
        """Adjust the interval after attachments were added or accessed."""
        current_size = self._index.size
        if current_size > self._last_index_size:
            self._current_interval_ms = max(
                self._base_interval_ms, self._current_interval_ms * GROWTH_FACTOR
            )
            if current_size >= self._index.capacity * NEAR_CAPACITY_RATIO:
                logger.debug("Attachment index near capacity (%d), sweeping now", current_size)
                self.run_cleanup()
                if self.running:
                    self._schedule()
        else:
            self._current_interval_ms = min(
                self._max_interval_ms, self._current_interval_ms * IDLE_FACTOR
            )
        self._last_index_size = current_size

    def run_cleanup(self) -> int | None:
        """Sweep expired records now.

        Returns the number removed, or ``None`` when the sweep was skipped or
        failed.  Never raises.
        """
        try:
            now = self._clock()
            if (
                self._last_cleanup_ms is not None
                and now - self._last_cleanup_ms < self._base_interval_ms / 2
            ):
                return None

            started = self._perf_counter()
            removed = self._index.clean_expired()
            elapsed_s = self._perf_counter() - started
            self._last_cleanup_ms = self._clock()
            observe_cleanup_duration(elapsed_s)

            if elapsed_s * 1000 > SLOW_CLEANUP_MS:
                self._current_interval_ms = min(
                    self._max_interval_ms, self._current_interval_ms * SLOW_FACTOR
                )
                logger.info(
                    "Slow attachment cleanup (%.1fms); interval now %.0fms",
                    elapsed_s * 1000,
                    self._current_interval_ms,
                )
            return removed
        except Exception:
            logger.exception("Error during attachment cleanup")
            return None

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._current_interval_ms / 1000)
                self.run_cleanup()
        except asyncio.CancelledError:
            logger.debug("Attachment cleanup loop cancelled")
            raise
