"""
Event Channel
Typed notifications published by the recording core for the UI layer
"""

import logging
import queue
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from .models import OrientationLabel, Vector3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PotholeDetected:
    """A candidate event was emitted; the UI should prompt the operator."""
    elapsed_ms: int

    @property
    def event_id(self) -> int:
        return self.elapsed_ms


@dataclass(frozen=True)
class CalibrationProgress:
    """Partial orientation estimate, published during calibration only."""
    label: OrientationLabel
    confidence: float
    accel_offsets: Vector3
    gyro_offsets: Vector3
    samples: int
    frozen: bool
    motion_warning: bool


@dataclass(frozen=True)
class SourceUnavailable:
    """A raw stream never delivered a first sample."""
    stream: str
    elapsed_ms: int


@dataclass(frozen=True)
class SessionFailed:
    """The sampling timer failed; the session is being stopped."""
    recording_id: str
    error: str


@dataclass(frozen=True)
class SessionStopped:
    recording_id: str
    export_path: Optional[str]
    frame_count: int


Handler = Callable[[object], None]

_STOP = object()


class EventBus:
    """
    Publish/subscribe channel between the core and its observers.

    publish() never blocks the caller: events are queued and delivered
    by a dispatcher thread, so the sampling timeline keeps its cadence
    however long a subscriber takes. With synchronous=True events are
    delivered inline, which keeps tests deterministic.
    """

    def __init__(self, synchronous: bool = False):
        self.synchronous = synchronous
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._queue: 'queue.Queue' = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self.published_count = 0

    def subscribe(self, event_type: Type, handler: Handler):
        """
        Register a handler for one event type.

        Args:
            event_type: Event dataclass to listen for
            handler: Callable taking the event instance
        """
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler):
        with self._lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    def publish(self, event: object):
        """Queue an event for delivery (or deliver it now in synchronous mode)."""
        self.published_count += 1
        if self.synchronous:
            self._deliver(event)
        else:
            self._queue.put(event)

    def start(self):
        """Start the dispatcher thread (no-op in synchronous mode)."""
        if self.synchronous or (self._thread and self._thread.is_alive()):
            return
        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name="EventBus-Dispatch-Thread",
            daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        """Deliver anything still queued, then stop the dispatcher."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _dispatch_loop(self):
        while True:
            event = self._queue.get()
            if event is _STOP:
                break
            self._deliver(event)

    def _deliver(self, event: object):
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler {handler!r} failed for {event!r}: {e}", exc_info=True)

    def __repr__(self):
        mode = "sync" if self.synchronous else "async"
        return f"<EventBus(mode={mode}, published={self.published_count})>"
