"""
Raw Sensor Sources
Latest-value cells and the push-style sources that feed them
"""

import logging
import threading
import time
from typing import Optional, Sequence, Tuple

from pothole_system.coordinator.clock import RateMeter, SessionClock
from pothole_system.models import RawSample

logger = logging.getLogger(__name__)

ACCEL = 'accelerometer'
GYRO = 'gyroscope'


class LatestValue:
    """
    Single-writer / single-reader cell holding the most recent sample.

    The writer swaps in a new immutable RawSample; the reader gets either
    the old or the new reference, never a mix of the two. There is no
    queue: an unread value is simply overwritten.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._value: Optional[RawSample] = None
        self.arrivals = RateMeter()

    def put(self, sample: RawSample):
        with self._lock:
            self._value = sample
        self.arrivals.mark(sample.arrival_ms)

    def get(self) -> Optional[RawSample]:
        return self._value

    @property
    def arrival_count(self) -> int:
        return self.arrivals.count

    def rate_hz(self) -> Optional[float]:
        """Measured arrival rate since the last clear()."""
        return self.arrivals.rate_hz()

    def clear(self):
        with self._lock:
            self._value = None
        self.arrivals.clear()

    def __repr__(self):
        return f"<LatestValue({self.name}, arrivals={self.arrival_count})>"


class RawSensorSource:
    """
    Base for anything that delivers acceleration (m/s²) and angular
    rate (rad/s) samples.

    Subclasses run their own delivery mechanism (hardware polling thread,
    platform callback, replay) and call push_accel()/push_gyro(). The
    recorder only ever reads the latest value of each cell.
    """

    def __init__(self, clock: Optional[SessionClock] = None):
        self.clock = clock or SessionClock()
        self.accel = LatestValue(ACCEL)
        self.gyro = LatestValue(GYRO)
        self.location = LatestValue('location')

    def push_accel(self, x: float, y: float, z: float):
        self.accel.put(RawSample(float(x), float(y), float(z), self.clock.now_ms()))

    def push_gyro(self, x: float, y: float, z: float):
        self.gyro.put(RawSample(float(x), float(y), float(z), self.clock.now_ms()))

    def push_location(self, latitude: float, longitude: float):
        """GPS fix; stored as a RawSample with z unused."""
        self.location.put(RawSample(float(latitude), float(longitude), 0.0, self.clock.now_ms()))

    def reset(self):
        """Forget every cached sample so a new session cannot read stale values."""
        self.accel.clear()
        self.gyro.clear()
        self.location.clear()

    def start(self):
        """Begin delivering samples. The base class is push-only."""

    def stop(self):
        """Stop delivering samples."""

    def get_status(self) -> dict:
        return {
            'source_type': type(self).__name__,
            'accel_samples': self.accel.arrival_count,
            'gyro_samples': self.gyro.arrival_count,
        }


TimedSample = Tuple[float, str, float, float, float]  # (offset_s, stream, x, y, z)


class ReplaySource(RawSensorSource):
    """
    Replays recorded raw samples in real time on a background thread.

    Each sample is (offset_s, stream, x, y, z) with stream 'accelerometer'
    or 'gyroscope'. Useful for bench runs without hardware.
    """

    def __init__(self, samples: Sequence[TimedSample], clock: Optional[SessionClock] = None,
                 loop: bool = False):
        super().__init__(clock)
        self.samples = sorted(samples, key=lambda s: s[0])
        self.loop = loop

        self.is_running = False
        self.replay_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()
        self.sample_count = 0

    def start(self):
        if self.is_running:
            logger.warning("Replay source already running")
            return

        self.stop_event.clear()
        self.sample_count = 0
        self.is_running = True
        self.replay_thread = threading.Thread(
            target=self._replay_loop,
            name="Replay-Source-Thread",
            daemon=True
        )
        self.replay_thread.start()
        logger.info(f"✓ Replay source started ({len(self.samples)} samples)")

    def stop(self):
        if not self.is_running:
            return
        self.stop_event.set()
        if self.replay_thread and self.replay_thread.is_alive():
            self.replay_thread.join(timeout=5)
        self.is_running = False
        logger.info(f"Replay source stopped after {self.sample_count} samples")

    def _replay_loop(self):
        while not self.stop_event.is_set():
            t0 = time.monotonic()
            for offset_s, stream, x, y, z in self.samples:
                if self.stop_event.wait(max(0.0, t0 + offset_s - time.monotonic())):
                    return
                if stream == ACCEL:
                    self.push_accel(x, y, z)
                elif stream == GYRO:
                    self.push_gyro(x, y, z)
                else:
                    logger.warning(f"Skipping replay sample with unknown stream '{stream}'")
                    continue
                self.sample_count += 1

            if not self.loop:
                break
        logger.info("Replay finished")
