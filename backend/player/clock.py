"""
Timing primitives for playback: the periodic tick and the loop latch.

Nothing here reads the wall clock directly; a clock callable is injected so
tests can step time deterministically.
"""
import asyncio
import logging
import math
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class LoopLatch:
    """
    Fires once per crossing of the end-of-stream boundary.

    The latch arms when the position reaches ``duration - epsilon`` and stays
    armed until the position falls back below ``rearm_threshold`` or, with
    coarse polling, clearly behind the point where it crossed. Polls that
    overshoot the boundary before the reset lands do not fire again.
    """

    def __init__(self, epsilon: float = 0.05, rearm_threshold: float = 0.25):
        self.epsilon = epsilon
        self.rearm_threshold = rearm_threshold
        self.armed = False
        self._crossed_at = 0.0

    def reset(self):
        self.armed = False
        self._crossed_at = 0.0

    def update(self, current_time: float, duration: float) -> bool:
        """Feed one position sample; True means "loop back to zero now"."""
        if not duration or not math.isfinite(duration) or duration <= 0:
            return False

        if self.armed:
            fell_back = current_time < self.rearm_threshold or current_time < self._crossed_at - self.rearm_threshold
            if not fell_back:
                return False
            self.armed = False

        if current_time >= duration - self.epsilon:
            self.armed = True
            self._crossed_at = current_time
            return True
        return False


class Ticker:
    """
    Periodic task with an injectable clock.

    ``poll()`` runs the callback when at least one interval has elapsed on
    the clock; ``run()`` drives it from an asyncio loop.
    """

    def __init__(self, interval: float, callback: Callable[[float], None], clock: Clock = time.monotonic):
        self.interval = interval
        self.callback = callback
        self.clock = clock
        self.ticks = 0
        self._last_tick: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    def tick(self) -> float:
        now = self.clock()
        self._last_tick = now
        self.ticks += 1
        self.callback(now)
        return now

    def poll(self) -> bool:
        now = self.clock()
        if self._last_tick is None or now - self._last_tick >= self.interval:
            self.tick()
            return True
        return False

    async def run(self):
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Playback tick failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None


def compute_progress(current_time: float, duration: float) -> float:
    """Percent of ``duration`` played, clamped to [0, 100]; unknown duration reads as 0."""
    if not duration or not math.isfinite(duration) or duration <= 0:
        return 0.0
    if not math.isfinite(current_time):
        return 0.0
    return max(0.0, min(100.0, (current_time / duration) * 100.0))
