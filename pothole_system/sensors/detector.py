"""
Bump Detector
Adaptive-baseline anomaly detection on corrected acceleration magnitude
"""

import logging
from collections import deque
from typing import Optional

import numpy as np

from pothole_system.config import SessionConfig
from pothole_system.models import DetectionEvent

logger = logging.getLogger(__name__)


class BumpDetector:
    """
    Two-phase detector: calibrating, then armed.

    Calibrating (first detector_calibration_size samples):
    - baseline is the running mean of magnitudes, seeded at standard gravity
    - nothing can fire

    Armed, per sample:
    - magnitude enters a rolling buffer of the last detector_buffer_size samples
    - outside cooldown, an event fires when the sample deviates from the
      baseline by more than the threshold AND the buffer's standard
      deviation exceeds detector_min_stddev. The second condition rejects
      a lone spike among calm neighbours and slow drifts with no variance.
    - the baseline always tracks slowly: b = b·decay + m·(1 − decay)
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config if config else SessionConfig.for_session()
        self.threshold = self.config.bump_threshold

        self.baseline = self.config.detector_baseline_seed
        self.buffer: deque = deque(maxlen=self.config.detector_buffer_size)
        self.calibration_count = 0
        self.last_detection_ms: Optional[int] = None
        self.detection_count = 0
        self.suppressed_count = 0

    @property
    def is_armed(self) -> bool:
        return self.calibration_count >= self.config.detector_calibration_size

    def set_threshold(self, threshold: float):
        """
        Change the sensitivity threshold; takes effect on the next sample.

        Raises:
            ValueError if threshold is outside [threshold_min, threshold_max]
        """
        threshold = float(threshold)
        if not self.config.threshold_min <= threshold <= self.config.threshold_max:
            raise ValueError(
                f"Threshold {threshold} outside "
                f"[{self.config.threshold_min}, {self.config.threshold_max}]"
            )
        self.threshold = threshold
        logger.info(f"Bump threshold set to {threshold:.1f} m/s²")

    def in_cooldown(self, elapsed_ms: int) -> bool:
        if self.last_detection_ms is None:
            return False
        return elapsed_ms - self.last_detection_ms < self.config.detector_cooldown_ms

    def reset(self):
        self.threshold = self.config.bump_threshold
        self.baseline = self.config.detector_baseline_seed
        self.buffer.clear()
        self.calibration_count = 0
        self.last_detection_ms = None
        self.detection_count = 0
        self.suppressed_count = 0

    def process(self, magnitude: float, elapsed_ms: int) -> Optional[DetectionEvent]:
        """
        Feed one corrected magnitude sample.

        Args:
            magnitude: Corrected acceleration magnitude (m/s²)
            elapsed_ms: Session-relative time of the sample

        Returns:
            DetectionEvent if this sample fired, otherwise None
        """
        if not self.is_armed:
            n = self.calibration_count
            self.baseline = (self.baseline * n + magnitude) / (n + 1)
            self.calibration_count += 1
            if self.is_armed:
                logger.info(f"✓ Bump detector armed (baseline {self.baseline:.3f} m/s²)")
            return None

        self.buffer.append(magnitude)
        event = None

        delta = abs(magnitude - self.baseline)
        if self.in_cooldown(elapsed_ms):
            if delta > self.threshold:
                self.suppressed_count += 1
        else:
            stddev = float(np.std(self.buffer))
            if delta > self.threshold and stddev > self.config.detector_min_stddev:
                self.last_detection_ms = elapsed_ms
                self.detection_count += 1
                event = DetectionEvent(elapsed_ms=elapsed_ms)
                logger.info(f"Bump detected at {elapsed_ms} ms "
                            f"(Δ={delta:.2f}, σ={stddev:.2f}, baseline={self.baseline:.2f})")

        decay = self.config.detector_baseline_decay
        self.baseline = self.baseline * decay + magnitude * (1.0 - decay)
        return event

    def get_status(self) -> dict:
        return {
            'armed': self.is_armed,
            'threshold': self.threshold,
            'baseline': self.baseline,
            'detections': self.detection_count,
            'suppressed': self.suppressed_count,
        }

    def __repr__(self):
        phase = "armed" if self.is_armed else "calibrating"
        return f"<BumpDetector(phase={phase}, baseline={self.baseline:.2f})>"
