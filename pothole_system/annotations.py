"""
Annotation Store
Operator responses to detections, applied retroactively to the frame log
"""

import logging
from typing import Dict, Iterable, List, Optional

from .models import Annotation, Feedback, FEEDBACK_LABELS, Frame

logger = logging.getLogger(__name__)


class AnnotationStore:
    """
    Annotations keyed by the detection's elapsed_ms.

    At most one annotation per key; a repeated key replaces the earlier
    one (last write wins). apply() labels every frame within
    ±window_ms of an annotated event. Where windows overlap the earliest
    event wins; annotations are never merged.
    """

    def __init__(self, window_ms: int = 10000):
        self.window_ms = window_ms
        self._annotations: Dict[int, Annotation] = {}
        self.applied = False

    def record(self, event_elapsed_ms: int, is_pothole: bool, feedback: Feedback) -> Annotation:
        """
        Store the response to one detection.

        Args:
            event_elapsed_ms: Elapsed time of the detection (event id)
            is_pothole: Operator's answer (False for timeouts)
            feedback: yes / no / timeout

        Returns:
            The stored Annotation
        """
        feedback = Feedback(feedback)
        annotation = Annotation(int(event_elapsed_ms), bool(is_pothole), feedback)

        if annotation.event_elapsed_ms in self._annotations:
            logger.warning(f"Replacing annotation for event at {event_elapsed_ms} ms")
        self._annotations[annotation.event_elapsed_ms] = annotation

        logger.info(f"Annotation recorded: event {event_elapsed_ms} ms -> {feedback.value}")
        return annotation

    def get(self, event_elapsed_ms: int) -> Optional[Annotation]:
        return self._annotations.get(event_elapsed_ms)

    def __contains__(self, event_elapsed_ms: int) -> bool:
        return event_elapsed_ms in self._annotations

    def __len__(self) -> int:
        return len(self._annotations)

    def __iter__(self):
        return iter(self.ordered())

    def ordered(self) -> List[Annotation]:
        """Annotations sorted by event time."""
        return [self._annotations[key] for key in sorted(self._annotations)]

    def match(self, elapsed_ms: int) -> Optional[Annotation]:
        """First annotation (by event time) whose window covers elapsed_ms."""
        for annotation in self.ordered():
            if abs(elapsed_ms - annotation.event_elapsed_ms) <= self.window_ms:
                return annotation
        return None

    def apply(self, frames: Iterable[Frame]) -> int:
        """
        Label frames from the stored annotations.

        Runs once per session; a second call is a no-op so annotations
        are never applied twice.

        Returns:
            Number of frames labelled
        """
        if self.applied:
            logger.debug("Annotations already applied, skipping")
            return 0

        labelled = 0
        if self._annotations:
            for frame in frames:
                annotation = self.match(frame.elapsed_ms)
                if annotation is not None:
                    frame.annotate(*FEEDBACK_LABELS[annotation.feedback])
                    labelled += 1

        self.applied = True
        logger.info(f"Applied {len(self)} annotations to {labelled} frames")
        return labelled
