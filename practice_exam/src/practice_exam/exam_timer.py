"""
Exam Countdown Timer

One countdown per exam attempt. Ticks once per second, periodically pushes
the remaining time to the backend and fires a completion callback exactly
once when the clock reaches zero.
"""

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

WARNING_THRESHOLD_SECONDS = 600
CRITICAL_THRESHOLD_SECONDS = 60


class TimerLevel(str, Enum):
    """Display state of the countdown. Informational only."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


def format_clock(seconds: int) -> str:
    """Render seconds as m:ss, or h:mm:ss once an hour or more remains."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class ExamTimer:
    """
    Countdown owned by a single exam session.

    By default the remaining time is decremented once per tick. With
    `drift_corrected=True` it is recomputed from an absolute deadline on each
    tick, so delayed ticks (suspended event loop, sleeping laptop) catch up.
    """

    def __init__(
        self,
        duration_seconds: int,
        on_expire: Callable[[], Awaitable[None]],
        on_sync: Optional[Callable[[int], Awaitable[None]]] = None,
        sync_interval: int = 60,
        tick_interval: float = 1.0,
        drift_corrected: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            duration_seconds: Total countdown length
            on_expire: Awaited once when the countdown reaches zero
            on_sync: Awaited with the remaining seconds every `sync_interval`
                elapsed seconds; failures are logged and ignored
            sync_interval: Elapsed seconds between syncs
            tick_interval: Real seconds between ticks (tests shrink this)
            drift_corrected: Compute remaining time from a deadline
            clock: Monotonic clock used for the deadline
        """
        if sync_interval <= 0:
            raise ValueError("sync_interval must be positive")
        self.on_expire = on_expire
        self.on_sync = on_sync
        self.sync_interval = sync_interval
        self.tick_interval = tick_interval
        self.drift_corrected = drift_corrected
        self._clock = clock

        self.duration = max(0, int(duration_seconds))
        self._remaining = self.duration
        self._deadline: Optional[float] = None
        self._expired = False
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._sync_tasks: Set[asyncio.Task] = set()

    # ==================== State ====================

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def elapsed(self) -> int:
        return self.duration - self._remaining

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def level(self) -> TimerLevel:
        if self._remaining <= CRITICAL_THRESHOLD_SECONDS:
            return TimerLevel.CRITICAL
        if self._remaining <= WARNING_THRESHOLD_SECONDS:
            return TimerLevel.WARNING
        return TimerLevel.NORMAL

    def display(self) -> str:
        return format_clock(self._remaining)

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.running:
            logger.warning("⚠️ [ExamTimer] Timer already running")
            return
        if self._expired:
            logger.warning("⚠️ [ExamTimer] Timer already expired; reseed before starting again")
            return

        self.running = True
        self._deadline = self._clock() + self._remaining
        self._task = asyncio.create_task(self._run())
        logger.info(f"⏱️ [ExamTimer] Started with {format_clock(self._remaining)} remaining")

    async def stop(self) -> None:
        """Stop ticking and drop any in-flight time syncs."""
        self.running = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for sync_task in list(self._sync_tasks):
            sync_task.cancel()
        if self._sync_tasks:
            await asyncio.gather(*self._sync_tasks, return_exceptions=True)
        self._sync_tasks.clear()

    def reseed(self, duration_seconds: int) -> bool:
        """
        Restart the countdown from a new duration.

        Only acts when the duration actually changes (a different module was
        loaded into this timer). Returns True if the timer was reseeded.
        """
        duration_seconds = max(0, int(duration_seconds))
        if duration_seconds == self.duration:
            return False

        self.duration = duration_seconds
        self._remaining = duration_seconds
        self._expired = False
        self._deadline = self._clock() + duration_seconds if self.running else None
        logger.info(f"🔄 [ExamTimer] Reseeded to {format_clock(duration_seconds)}")
        return True

    # ==================== Ticking ====================

    async def _run(self) -> None:
        try:
            while self.running and not self._expired:
                await asyncio.sleep(self.tick_interval)
                if not self.running:
                    break
                await self.tick()
        except asyncio.CancelledError:
            pass

    async def tick(self) -> None:
        """Advance the countdown by one tick."""
        if self._expired:
            return

        before = self._remaining
        if self.drift_corrected and self._deadline is not None:
            self._remaining = max(0, min(before, math.ceil(self._deadline - self._clock())))
        else:
            self._remaining = max(0, before - 1)

        elapsed_before = self.duration - before
        if self.on_sync and self._remaining > 0:
            if self.elapsed // self.sync_interval > elapsed_before // self.sync_interval:
                self._schedule_sync(self._remaining)

        if self._remaining == 0:
            await self._expire()

    async def _expire(self) -> None:
        if self._expired:
            return
        self._expired = True
        self.running = False
        logger.info("⏰ [ExamTimer] Time is up")
        try:
            await self.on_expire()
        except Exception as e:
            logger.error(f"❌ [ExamTimer] Expiry handler failed: {e}")

    def _schedule_sync(self, remaining: int) -> None:
        task = asyncio.create_task(self._sync(remaining))
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def _sync(self, remaining: int) -> None:
        try:
            await self.on_sync(remaining)
            logger.debug(f"[ExamTimer] Synced {remaining}s remaining")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"⚠️ [ExamTimer] Time sync failed (will retry next interval): {e}")
