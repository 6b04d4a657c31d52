"""
Shared fixtures: a controllable clock, a hand-driven scheduler and a
recorder wired to both with synchronous event delivery.
"""

import pytest

from pothole_system.config import SessionConfig
from pothole_system.coordinator.clock import SessionClock
from pothole_system.events import EventBus
from pothole_system.recorder import SessionRecorder
from pothole_system.sensors.source import RawSensorSource

GRAVITY = 9.81


class FakeTime:
    """Monotonic time function advanced by the test, in whole milliseconds."""

    def __init__(self, start_ms: int = 0):
        self.ms = start_ms

    def advance(self, ms: int):
        self.ms += ms

    def __call__(self) -> float:
        return self.ms / 1000.0


class ManualScheduler:
    """Stands in for SamplingScheduler; the test calls recorder.tick() itself."""

    def __init__(self, interval_ms, on_tick, on_error=None):
        self.interval_ms = interval_ms
        self.on_tick = on_tick
        self.on_error = on_error
        self.is_running = False
        self.stop_calls = 0

    def start(self):
        self.is_running = True

    def stop(self):
        self.stop_calls += 1
        self.is_running = False

    def get_status(self):
        return {'is_running': self.is_running}


class EventLog:
    """Collects every event of the subscribed types."""

    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def clock(fake_time):
    return SessionClock(time_fn=fake_time)


@pytest.fixture
def source(clock):
    return RawSensorSource(clock)


@pytest.fixture
def bus():
    return EventBus(synchronous=True)


@pytest.fixture
def config(tmp_path):
    return SessionConfig(output_dir=tmp_path / 'recordings', fallback_dir=None)


@pytest.fixture
def recorder(source, bus):
    return SessionRecorder(source, bus=bus, scheduler_factory=ManualScheduler)


def drive(recorder, fake_time, source, count, accel=(0.0, 0.0, GRAVITY), gyro=None, step_ms=10):
    """
    Push one raw sample and run one tick, count times.

    Returns:
        List of frames produced (None entries for skipped ticks)
    """
    frames = []
    for _ in range(count):
        fake_time.advance(step_ms)
        if accel is not None:
            source.push_accel(*accel)
        if gyro is not None:
            source.push_gyro(*gyro)
        frames.append(recorder.tick())
    return frames
