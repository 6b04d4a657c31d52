"""
Sampling Scheduler
Fixed-period timer that drives frame production at 100 Hz
"""

import logging
import threading
import time
from typing import Callable, Optional

from pothole_system.errors import SchedulerError

logger = logging.getLogger(__name__)


class SamplingScheduler:
    """
    Periodic tick on a background thread.

    Ticks are scheduled against absolute deadlines so the average period
    stays at interval_ms even when individual callbacks jitter. When a
    tick overruns by more than one period the missed ticks are dropped
    rather than fired back to back.

    An exception raised by the tick callback is fatal: the loop exits and
    on_error receives a SchedulerError wrapping it. stop() is synchronous;
    once it returns no further ticks fire.
    """

    def __init__(
            self,
            interval_ms: float,
            on_tick: Callable[[], None],
            on_error: Optional[Callable[[SchedulerError], None]] = None,
            name: str = "Sampling-Scheduler-Thread"
    ):
        self.interval_s = interval_ms / 1000.0
        self.on_tick = on_tick
        self.on_error = on_error
        self.name = name

        self.is_running = False
        self.stop_event = threading.Event()
        self.tick_thread: Optional[threading.Thread] = None

        self.tick_count = 0
        self.overrun_count = 0

    def start(self):
        """Start ticking. Calling start() on a running scheduler is a no-op."""
        if self.is_running:
            logger.warning("Sampling scheduler already running")
            return

        self.stop_event.clear()
        self.tick_count = 0
        self.overrun_count = 0
        self.is_running = True

        self.tick_thread = threading.Thread(
            target=self._tick_loop,
            name=self.name,
            daemon=True
        )
        self.tick_thread.start()
        logger.info(f"✓ Sampling scheduler started ({1.0 / self.interval_s:.0f} Hz)")

    def stop(self, timeout: float = 5.0):
        """
        Stop ticking and wait for the tick thread to exit.

        Safe to call from inside a tick callback (the join is skipped when
        the caller is the tick thread itself).
        """
        self.stop_event.set()

        thread = self.tick_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.error("✗ Sampling thread did not exit within timeout")

        if self.is_running:
            logger.info(f"Sampling scheduler stopped after {self.tick_count} ticks "
                        f"({self.overrun_count} overruns)")
        self.is_running = False

    def _tick_loop(self):
        next_deadline = time.monotonic() + self.interval_s

        while not self.stop_event.wait(max(0.0, next_deadline - time.monotonic())):
            try:
                self.on_tick()
                self.tick_count += 1
            except Exception as e:
                logger.error(f"✗ Sampling tick failed: {e}", exc_info=True)
                self.is_running = False
                self.stop_event.set()
                if self.on_error:
                    self.on_error(SchedulerError(f"Sampling tick failed: {e}", cause=e))
                return

            next_deadline += self.interval_s
            now = time.monotonic()
            if now - next_deadline > self.interval_s:
                self.overrun_count += 1
                next_deadline = now + self.interval_s

    def get_status(self) -> dict:
        return {
            'is_running': self.is_running,
            'interval_ms': self.interval_s * 1000.0,
            'ticks': self.tick_count,
            'overruns': self.overrun_count,
        }

    def __repr__(self):
        status = "running" if self.is_running else "stopped"
        return f"<SamplingScheduler(status={status}, ticks={self.tick_count})>"
