"""
Session Clock
Single time reference for frame timestamps, raw sample arrival and cooldowns
"""

import threading
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SessionClock:
    """
    Thread-safe monotonic millisecond clock.

    Raw sources stamp arrivals with now_ms(), the recorder captures one
    start reference per session and derives every frame's elapsed_ms
    from it. Readings never go backwards even if the underlying time
    function does.
    """

    def __init__(self, time_fn: Optional[Callable[[], float]] = None):
        """
        Args:
            time_fn: Returns monotonic seconds. Defaults to time.monotonic;
                     tests inject a controllable function.
        """
        self._time_fn = time_fn or time.monotonic
        self._lock = threading.Lock()
        self._last_ms: Optional[float] = None

    def now_ms(self) -> float:
        """
        Get the current monotonic time.

        Returns:
            float: Milliseconds on an arbitrary but fixed origin
        """
        with self._lock:
            current = self._time_fn() * 1000.0

            if self._last_ms is not None and current < self._last_ms:
                current = self._last_ms
                logger.debug("Clamped clock reading to keep it monotonic")

            self._last_ms = current
            return current

    def elapsed_ms(self, start_ms: float, now_ms: Optional[float] = None) -> int:
        """
        Whole milliseconds since start_ms, never negative.

        Args:
            start_ms: Reference reading from now_ms()
            now_ms: Reading to measure to; defaults to the current time
        """
        if now_ms is None:
            now_ms = self.now_ms()
        return max(0, int(round(now_ms - start_ms)))

    @staticmethod
    def wall_time() -> datetime:
        """Current UTC wall-clock time, used only for metadata."""
        return datetime.now(timezone.utc)

    def __repr__(self):
        return f"<SessionClock(last_ms={self._last_ms})>"


class RateMeter:
    """
    Running event-rate estimate in constant memory.

    Keeps only the count and the first and last instants, which gives
    the same result as 1000 / mean(inter-arrival interval).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.count = 0
        self.first_ms: Optional[float] = None
        self.last_ms: Optional[float] = None

    def mark(self, t_ms: float):
        with self._lock:
            if self.first_ms is None:
                self.first_ms = t_ms
            self.last_ms = t_ms
            self.count += 1

    def rate_hz(self) -> Optional[float]:
        """Measured rate rounded to 0.01 Hz, or None with fewer than two marks."""
        with self._lock:
            if self.count < 2 or self.last_ms <= self.first_ms:
                return None
            return round((self.count - 1) * 1000.0 / (self.last_ms - self.first_ms), 2)

    def clear(self):
        with self._lock:
            self.count = 0
            self.first_ms = None
            self.last_ms = None

    def __repr__(self):
        return f"<RateMeter(count={self.count}, rate={self.rate_hz()})>"
