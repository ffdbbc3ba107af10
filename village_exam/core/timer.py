"""Countdown clock for an exam session.

The timer ticks once per ``tick_seconds`` on the running event loop. It never
pauses: wall-clock time keeps counting against the student through network
loss. Checkpoints are persisted every ``checkpoint_every`` elapsed ticks, so a
hard crash can lose up to one checkpoint period in the student's favour.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from village_exam.config import TIME_CHECKPOINT_SECONDS

logger = logging.getLogger(__name__)


class CountdownTimer:
    def __init__(
        self,
        remaining_seconds: int,
        on_expire: Callable[[], Awaitable[object]],
        on_checkpoint: Optional[Callable[[int], Awaitable[object]]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        checkpoint_every: int = TIME_CHECKPOINT_SECONDS,
        tick_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.remaining = max(0, int(remaining_seconds))
        self.elapsed = 0
        self._on_expire = on_expire
        self._on_checkpoint = on_checkpoint
        self._on_tick = on_tick
        self._checkpoint_every = checkpoint_every
        self._tick_seconds = tick_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._expired = False
        self._background: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        if self.running or self._expired:
            return
        if self.remaining <= 0:
            self._expire()
            return
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> int:
        """Stop ticking and return the remaining seconds."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        return self.remaining

    async def wait(self) -> None:
        """Wait for the tick loop and any checkpoint/expiry callbacks to finish."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run(self) -> None:
        while self.remaining > 0:
            await self._sleep(self._tick_seconds)
            self.remaining -= 1
            self.elapsed += 1
            if self._on_tick is not None:
                self._on_tick(self.remaining)
            if self.remaining <= 0:
                break
            if self._on_checkpoint is not None and self.elapsed % self._checkpoint_every == 0:
                self._spawn(self._checkpoint(self.remaining))
        self.remaining = 0
        self._expire()

    def _expire(self) -> None:
        # Fires at most once; the expiry callback runs outside the tick task
        # so it may cancel this timer safely.
        if self._expired:
            return
        self._expired = True
        self._spawn(self._expire_callback())

    async def _expire_callback(self) -> None:
        try:
            await self._on_expire()
        except Exception:
            logger.warning("Expiry callback failed", exc_info=True)

    async def _checkpoint(self, remaining: int) -> None:
        try:
            await self._on_checkpoint(remaining)
        except Exception:
            logger.warning("Remaining-time checkpoint (%ss) failed", remaining, exc_info=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
