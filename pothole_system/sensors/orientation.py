"""
Mount Orientation
Gravity-based orientation calibration and the per-frame axis correction
"""

import logging
import math
from typing import Callable, List, Optional

import numpy as np

from pothole_system.config import SessionConfig
from pothole_system.models import OrientationLabel, OrientationState, Vector3

logger = logging.getLogger(__name__)

# (positive label, negative label) per device axis
_AXIS_LABELS = {
    0: (OrientationLabel.LANDSCAPE_LEFT, OrientationLabel.LANDSCAPE_RIGHT),
    1: (OrientationLabel.PORTRAIT, OrientationLabel.PORTRAIT_DOWN),
    2: (OrientationLabel.FACE_UP, OrientationLabel.FACE_DOWN),
}

# label -> (device axis, gravity sign along it)
_LABEL_AXES = {
    label: (axis, 1.0 if index == 0 else -1.0)
    for axis, labels in _AXIS_LABELS.items()
    for index, label in enumerate(labels)
}

# Classification precedence when components tie: z, then x, then y
_AXIS_PRECEDENCE = (2, 0, 1)


def correct_axes(accel: Vector3, label: OrientationLabel) -> Vector3:
    """
    Rotate a raw acceleration reading into the canonical mount frame.

    Only the landscape mounts swap x and y; z always passes through.

    Args:
        accel: Raw (x, y, z) in m/s²
        label: Frozen orientation label

    Returns:
        Corrected (x', y', z)
    """
    x, y, z = accel
    if label is OrientationLabel.LANDSCAPE_LEFT:
        return (y, -x, z)
    if label is OrientationLabel.LANDSCAPE_RIGHT:
        return (-y, x, z)
    return (x, y, z)


def magnitude(vector: Vector3) -> float:
    x, y, z = vector
    return math.sqrt(x * x + y * y + z * z)


class OrientationCalibrator:
    """
    Determines how the device is physically mounted from gravity alone.

    The first orientation_window raw acceleration samples are buffered.
    Every orientation_update_every samples the buffer mean is low-pass
    filtered, scaled to standard gravity and classified by its dominant
    axis. The label locks ("freezes") as soon as it is known with more
    than orientation_freeze_confidence percent, or when the window fills,
    whichever comes first. A frozen label is never changed; offsets keep
    refining until their own windows are full.

    Gyroscope bias is the plain mean of the first gyro_offset_window
    samples.
    """

    def __init__(
            self,
            config: Optional[SessionConfig] = None,
            on_progress: Optional[Callable[[OrientationState, int], None]] = None
    ):
        """
        Args:
            config: Session configuration
            on_progress: Called with (state, samples_seen) after every
                         partial estimate while calibration is running
        """
        self.config = config if config else SessionConfig.for_session()
        self.on_progress = on_progress
        self.state = OrientationState()

        self._accel_buffer: List[Vector3] = []
        self._gyro_buffer: List[Vector3] = []
        self._filtered: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def accel_complete(self) -> bool:
        """True once the acceleration calibration window is full."""
        return len(self._accel_buffer) >= self.config.orientation_window

    @property
    def gyro_complete(self) -> bool:
        return len(self._gyro_buffer) >= self.config.gyro_offset_window

    @property
    def frozen_label(self) -> OrientationLabel:
        """Label to correct frames with; UNKNOWN until the label freezes."""
        return self.state.label if self.state.frozen else OrientationLabel.UNKNOWN

    def reset(self):
        self.state = OrientationState()
        self._accel_buffer = []
        self._gyro_buffer = []
        self._filtered = None

    def add_accel(self, sample: Vector3):
        """
        Feed one raw (uncorrected) acceleration sample.

        Samples beyond the calibration window are ignored.
        """
        if self.accel_complete:
            return

        self._accel_buffer.append(tuple(sample))
        count = len(self._accel_buffer)

        if count % self.config.orientation_update_every == 0 or self.accel_complete:
            self._estimate()
            if self.accel_complete and not self.state.frozen:
                self._freeze("calibration window closed")
            if self.on_progress:
                self.on_progress(self.state, count)

    def add_gyro(self, sample: Vector3):
        """Feed one raw angular-rate sample into the bias estimate."""
        if self.gyro_complete:
            return

        self._gyro_buffer.append(tuple(sample))
        count = len(self._gyro_buffer)
        if count % self.config.orientation_update_every == 0 or self.gyro_complete:
            self.state.gyro_offsets = self._as_vector(np.mean(self._gyro_buffer, axis=0))
            if self.gyro_complete:
                logger.info(f"Gyro offsets fixed at {self._format(self.state.gyro_offsets)} rad/s")

    # ------------------------------------------------------------------
    # Private: estimation
    # ------------------------------------------------------------------

    def _estimate(self):
        buffer = np.asarray(self._accel_buffer, dtype=float)
        mean = buffer.mean(axis=0)

        variance = buffer.var(axis=0)
        if np.any(variance > self.config.calibration_motion_variance) and not self.state.motion_warning:
            self.state.motion_warning = True
            logger.warning(f"⚠ Device moving during calibration (variance {variance.round(2).tolist()}); "
                           f"orientation may be unreliable")

        if self._filtered is None:
            self._filtered = mean
        else:
            alpha = self.config.orientation_alpha
            self._filtered = alpha * self._filtered + (1.0 - alpha) * mean

        norm = float(np.linalg.norm(self._filtered))
        if norm == 0.0:
            logger.debug("Zero acceleration vector, skipping orientation estimate")
            return

        gravity = self.config.gravity
        normalized = self._filtered * (gravity / norm)
        components = np.abs(normalized)

        dominant = max(_AXIS_PRECEDENCE, key=lambda axis: components[axis])
        confidence = min(100.0, max(0.0, components[dominant] / gravity * 100.0))

        if components[dominant] > self.config.orientation_hysteresis:
            positive, negative = _AXIS_LABELS[dominant]
            label = positive if normalized[dominant] > 0 else negative
        else:
            label = self.state.label
            confidence = min(confidence, self.config.ambiguous_confidence_cap)

        axis, direction = dominant, normalized[dominant]
        if self.state.frozen and self.state.label in _LABEL_AXES:
            # Offsets stay relative to the locked mount's gravity axis
            axis, direction = _LABEL_AXES[self.state.label]
        reference = np.zeros(3)
        reference[axis] = math.copysign(gravity, direction)
        self.state.accel_offsets = self._as_vector(self._filtered - reference)

        if self.state.frozen:
            return

        self.state.label = label
        self.state.confidence = float(confidence)
        logger.debug(f"Orientation estimate: {label.value} ({confidence:.1f}%)")

        if label is not OrientationLabel.UNKNOWN and confidence > self.config.orientation_freeze_confidence:
            self._freeze(f"confidence {confidence:.1f}%")

    def _freeze(self, reason: str):
        self.state.frozen = True
        logger.info(f"✓ Orientation frozen: {self.state.label.value} "
                    f"({self.state.confidence:.1f}%, {reason})")

    @staticmethod
    def _as_vector(values) -> Vector3:
        return (float(values[0]), float(values[1]), float(values[2]))

    @staticmethod
    def _format(vector: Vector3) -> str:
        return "(" + ", ".join(f"{v:.3f}" for v in vector) + ")"

    def __repr__(self):
        return (f"<OrientationCalibrator(label={self.state.label.value}, "
                f"frozen={self.state.frozen}, samples={len(self._accel_buffer)})>")
