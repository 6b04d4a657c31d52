"""
Detection Prompts
One-at-a-time operator prompts with an auto-timeout
"""

import logging
import threading
from typing import Callable, Optional

from .errors import PotholeSystemError
from .events import EventBus, PotholeDetected

logger = logging.getLogger(__name__)


class PromptManager:
    """
    Bridges PotholeDetected events to an operator and back.

    At most one prompt is outstanding. The ask callback is invoked with
    the event id; the UI later calls answer(). If nobody answers within
    timeout_s the prompt resolves as a timeout. A detection that arrives
    while a prompt is open is resolved as a timeout straight away, so
    every emitted event receives exactly one response.

    Usage:
        prompts = PromptManager(recorder, ask=show_overlay)
        prompts.attach(recorder.bus)
        ...
        prompts.answer(event_id, confirmed=True)
    """

    def __init__(self, recorder, ask: Optional[Callable[[int], None]] = None,
                 timeout_s: Optional[float] = None):
        """
        Args:
            recorder  : SessionRecorder receiving the responses
            ask       : Called with the event id when a prompt opens
            timeout_s : Seconds before an unanswered prompt times out;
                        defaults to the session's prompt_timeout_s
        """
        self.recorder = recorder
        self.ask = ask
        self.timeout_s = timeout_s

        self._lock = threading.Lock()
        self._current: Optional[int] = None
        self._timer: Optional[threading.Timer] = None

        self.answered_count = 0
        self.timeout_count = 0

    @property
    def current_event(self) -> Optional[int]:
        return self._current

    def attach(self, bus: EventBus):
        bus.subscribe(PotholeDetected, self.on_detection)

    def detach(self, bus: EventBus):
        bus.unsubscribe(PotholeDetected, self.on_detection)
        self.cancel()

    def on_detection(self, event: PotholeDetected):
        with self._lock:
            if self._current is not None:
                busy = True
            else:
                busy = False
                self._current = event.event_id
                self._timer = threading.Timer(self._timeout(), self._expire, args=(event.event_id,))
                self._timer.daemon = True
                self._timer.start()

        if busy:
            logger.info(f"Prompt already open for {self._current} ms, "
                        f"resolving {event.event_id} ms as timeout")
            self._resolve(event.event_id, None)
            return

        logger.info(f"Prompting operator for detection at {event.event_id} ms")
        if self.ask:
            self.ask(event.event_id)

    def answer(self, event_id: int, confirmed: bool) -> bool:
        """
        Deliver the operator's answer.

        Returns:
            False if the prompt was no longer open (already timed out)
        """
        if not self._close(event_id):
            logger.warning(f"Answer for {event_id} ms ignored — prompt no longer open")
            return False
        self.answered_count += 1
        self._resolve(event_id, confirmed)
        return True

    def flush(self):
        """Resolve an open prompt as a timeout, e.g. just before the session stops."""
        event_id = self._current
        if event_id is not None:
            self._expire(event_id)

    def cancel(self):
        """Close any open prompt without recording a response."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = None
            self._current = None

    def _timeout(self) -> float:
        if self.timeout_s is not None:
            return self.timeout_s
        config = getattr(self.recorder, 'config', None)
        return config.prompt_timeout_s if config else 10.0

    def _expire(self, event_id: int):
        if not self._close(event_id):
            return
        self.timeout_count += 1
        logger.info(f"Prompt for {event_id} ms timed out")
        self._resolve(event_id, None)

    def _close(self, event_id: int) -> bool:
        with self._lock:
            if self._current != event_id:
                return False
            if self._timer:
                self._timer.cancel()
            self._timer = None
            self._current = None
            return True

    def _resolve(self, event_id: int, confirmed: Optional[bool]):
        try:
            if confirmed is None:
                self.recorder.prompt_timed_out(event_id)
            else:
                self.recorder.respond_to_prompt(event_id, confirmed)
        except PotholeSystemError as e:
            logger.warning(f"⚠ Could not record response for {event_id} ms: {e}")
