"""
Pothole System Session Configuration
Sampling, orientation calibration, bump detection and annotation parameters
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional
import tempfile

from .errors import ConfigError


@dataclass
class SessionConfig:
    """
    Per-session tunables.

    One instance is handed to SessionRecorder.start(); the recorder keeps
    its own copy so concurrent or consecutive sessions never share state.
    """

    # Sampling settings
    sample_interval_ms: int = 10  # 100 Hz fused frame rate
    source_timeout_ms: int = 1000  # Report a stream as unavailable after this long

    # Orientation calibration
    gravity: float = 9.81  # m/s², normalisation target
    orientation_window: int = 100  # Raw accel samples used for calibration
    orientation_update_every: int = 10  # Re-estimate after this many new samples
    orientation_alpha: float = 0.8  # Low-pass weight of the previous estimate
    orientation_hysteresis: float = 6.0  # m/s² a dominant axis must exceed
    orientation_freeze_confidence: float = 60.0  # % above which the label locks
    ambiguous_confidence_cap: float = 50.0  # % cap when no axis dominates
    calibration_motion_variance: float = 2.0  # Per-axis variance flagged as motion
    gyro_offset_window: int = 100  # Raw gyro samples averaged for bias

    # Bump detection
    bump_threshold: float = 5.0  # m/s² deviation from baseline
    threshold_min: float = 1.0
    threshold_max: float = 10.0
    detector_calibration_size: int = 200  # ≈2 s of frames before arming
    detector_buffer_size: int = 50  # Rolling window for variance check
    detector_cooldown_ms: int = 3000
    detector_min_stddev: float = 1.0
    detector_baseline_seed: float = 9.8
    detector_baseline_decay: float = 0.99  # Weight of old baseline per sample

    # Annotation
    annotation_window_ms: int = 10000  # ± window applied around each event
    prompt_timeout_s: float = 10.0

    # Export settings
    output_dir: Path = field(default_factory=lambda: Path('recordings'))
    fallback_dir: Optional[Path] = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / 'PotholeDetector'
    )

    @property
    def target_rate_hz(self) -> float:
        """Nominal fused frame rate."""
        return 1000.0 / self.sample_interval_ms

    def validate(self) -> 'SessionConfig':
        """
        Check the configuration for impossible values.

        Raises:
            ConfigError describing the first invalid field.

        Returns:
            self, so calls can be chained.
        """
        if self.sample_interval_ms <= 0:
            raise ConfigError("sample_interval_ms must be positive")
        if self.orientation_window <= 0 or self.gyro_offset_window <= 0:
            raise ConfigError("calibration windows must be positive")
        if self.orientation_update_every <= 0:
            raise ConfigError("orientation_update_every must be positive")
        if not 0.0 <= self.orientation_alpha < 1.0:
            raise ConfigError("orientation_alpha must be in [0, 1)")
        if self.detector_buffer_size < 2:
            raise ConfigError("detector_buffer_size must hold at least 2 samples")
        if self.detector_calibration_size < 0 or self.detector_cooldown_ms < 0:
            raise ConfigError("detector sizes and cooldown cannot be negative")
        if not 0.0 < self.detector_baseline_decay < 1.0:
            raise ConfigError("detector_baseline_decay must be in (0, 1)")
        if self.threshold_min > self.threshold_max:
            raise ConfigError("threshold_min is above threshold_max")
        if not self.threshold_min <= self.bump_threshold <= self.threshold_max:
            raise ConfigError(
                f"bump_threshold {self.bump_threshold} outside "
                f"[{self.threshold_min}, {self.threshold_max}]"
            )
        if self.annotation_window_ms < 0:
            raise ConfigError("annotation_window_ms cannot be negative")
        return self

    def copy(self, **changes) -> 'SessionConfig':
        """Return an independent copy, optionally with fields changed."""
        return replace(self, **changes)

    @classmethod
    def for_session(cls) -> 'SessionConfig':
        """
        Create the configuration used for a normal drive recording.

        Returns:
            SessionConfig with all defaults.
        """
        return cls()

    @classmethod
    def for_bench_test(cls) -> 'SessionConfig':
        """
        Create a configuration for desk checks with the device at rest.

        Shortens the calibration phases so detection arms after half a
        second instead of two.

        Returns:
            SessionConfig with short calibration windows.
        """
        return cls(
            orientation_window=30,
            gyro_offset_window=30,
            detector_calibration_size=50,
            detector_cooldown_ms=1000,
        )
