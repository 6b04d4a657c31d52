"""
Pothole System - Session Recorder
=================================
Owns one recording session end to end.

Usage:
    recorder = SessionRecorder(source)
    recorder.start(SessionConfig.for_session())
    # ... bus delivers PotholeDetected, UI answers via respond_to_prompt() ...
    result = recorder.stop()

Per tick (100 Hz), as one atomic unit:
    latest raw samples -> orientation calibration (first window only)
    -> axis correction -> frame log + bump detector

On stop:
    annotations applied to the frame log -> metadata trailer -> CSV export

Failure policy:
    A raw stream that never delivers is reported once and the session
    continues degraded. A scheduler failure ends the session and exports
    whatever was captured. An export failure keeps the finished session
    in memory so retry_export() can be called.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .annotations import AnnotationStore
from .config import SessionConfig
from .coordinator.clock import RateMeter, SessionClock
from .coordinator.scheduler import SamplingScheduler
from .errors import ExportError, RecorderStateError, SchedulerError, UnknownEventError
from .events import (
    CalibrationProgress,
    EventBus,
    PotholeDetected,
    SessionFailed,
    SessionStopped,
    SourceUnavailable,
)
from .export.writer import SCHEMA_VERSION, SessionExportWriter, format_cell
from .models import (
    ExportResult,
    Feedback,
    Frame,
    OrientationState,
    RecordingInfo,
    Session,
)
from .sensors.detector import BumpDetector
from .sensors.orientation import OrientationCalibrator, correct_axes, magnitude
from .sensors.source import RawSensorSource

logger = logging.getLogger(__name__)

SchedulerFactory = Callable[..., SamplingScheduler]


class SessionRecorder:
    """
    Orchestrates the start/stop lifecycle of a recording session.

    Responsibilities:
      - Reset and wire the calibrator, detector and annotation store per session
      - Produce exactly one frame per scheduler tick once acceleration exists
      - Publish detections, calibration progress and failures on the EventBus
      - Apply annotations and export the session on stop()
      - Register exports with an optional RecordingCatalog
    """

    def __init__(
            self,
            source: RawSensorSource,
            bus: Optional[EventBus] = None,
            clock: Optional[SessionClock] = None,
            catalog=None,
            scheduler_factory: SchedulerFactory = SamplingScheduler,
    ):
        """
        Args:
            source            : Raw acceleration / gyroscope source
            bus               : Event channel for UI notifications
            clock             : Time reference; defaults to the source's clock
                                so arrival stamps and frame times agree
            catalog           : Optional RecordingCatalog for finished exports
            scheduler_factory : Builds the periodic timer (tests pass a manual one)
        """
        self.source = source
        self.bus = bus if bus else EventBus()
        self.clock = clock if clock else source.clock
        self.catalog = catalog
        self.scheduler_factory = scheduler_factory

        self.config: Optional[SessionConfig] = None
        self.session: Optional[Session] = None
        self.calibrator: Optional[OrientationCalibrator] = None
        self.detector: Optional[BumpDetector] = None
        self.scheduler: Optional[SamplingScheduler] = None

        self.last_error: Optional[BaseException] = None

        self._active = False
        self._tick_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._annotation_lock = threading.Lock()
        self._tick_rate = RateMeter()
        self._outbox: List[object] = []
        self._pending_threshold: Optional[float] = None
        self._trailer: Optional[List[Tuple[str, object]]] = None
        self._last_result: Optional[ExportResult] = None

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._active

    @property
    def orientation(self) -> Optional[OrientationState]:
        return self.session.orientation if self.session else None

    def start(self, config: Optional[SessionConfig] = None,
              device_info: Optional[Dict[str, str]] = None):
        """
        Begin a new session.

        Args:
            config: Session parameters; copied, never shared
            device_info: Diagnostic metadata exported with the session

        Returns:
            datetime: UTC start time of the new session

        Raises:
            RecorderStateError if a session is already active
            ConfigError if the configuration is invalid
        """
        with self._lifecycle_lock:
            if self._active:
                raise RecorderStateError("A recording session is already active")

            config = (config if config else SessionConfig.for_session()).copy()
            if self._pending_threshold is not None:
                config.bump_threshold = self._pending_threshold
                self._pending_threshold = None
            self.config = config.validate()

            self.source.reset()
            self.calibrator = OrientationCalibrator(self.config, on_progress=self._on_calibration_progress)
            self.detector = BumpDetector(self.config)
            self.session = Session(
                recording_id=str(uuid.uuid4()),
                start_time=self.clock.wall_time(),
                start_ms=self.clock.now_ms(),
                annotations=AnnotationStore(self.config.annotation_window_ms),
                orientation=self.calibrator.state,
                device_info=dict(device_info or {}),
            )
            self._tick_rate.clear()
            self._outbox = []
            self._trailer = None
            self._last_result = None
            self.last_error = None

            logger.info("=" * 55)
            logger.info(f"  Recording session {self.session.recording_id} — starting")
            logger.info("=" * 55)

            self.bus.start()
            try:
                self.source.start()
            except Exception as e:
                # Degraded session: the source-unavailable report follows
                logger.warning(f"⚠ Sensor source failed to start — continuing without it. Error: {e}")

            self._active = True
            self.scheduler = self.scheduler_factory(
                self.config.sample_interval_ms,
                self.tick,
                self._on_scheduler_error,
            )
            self.scheduler.start()

            logger.info(f"✓ Recording started ({self.config.target_rate_hz:.0f} Hz, "
                        f"threshold {self.config.bump_threshold:.1f} m/s²)")
            return self.session.start_time

    def tick(self) -> Optional[Frame]:
        """
        Produce one frame from the latest raw samples.

        Called by the scheduler every sample_interval_ms. Returns None
        (no frame) when no acceleration sample has arrived yet.

        Events raised during the tick are published after the tick lock
        is released, so a synchronous subscriber may call stop().
        """
        with self._tick_lock:
            frame = self._produce_frame() if self._active else None
            outbox, self._outbox = self._outbox, []

        for event in outbox:
            self.bus.publish(event)
        return frame

    def set_threshold(self, threshold: float):
        """
        Adjust detection sensitivity.

        Applies from the next sample of the active session, or to the
        next session when idle.

        Raises:
            ValueError if threshold is outside the configured range
        """
        if self._active and self.detector:
            self.detector.set_threshold(threshold)
            return

        limits = self.config if self.config else SessionConfig.for_session()
        threshold = float(threshold)
        if not limits.threshold_min <= threshold <= limits.threshold_max:
            raise ValueError(f"Threshold {threshold} outside "
                             f"[{limits.threshold_min}, {limits.threshold_max}]")
        self._pending_threshold = threshold
        logger.info(f"Bump threshold {threshold:.1f} m/s² will apply to the next session")

    def respond_to_prompt(self, event_id: int, confirmed: bool):
        """Record the operator's yes/no answer for a detection."""
        self.annotate(event_id, confirmed, Feedback.YES if confirmed else Feedback.NO)

    def prompt_timed_out(self, event_id: int):
        """Record that the operator did not answer a detection prompt."""
        self.annotate(event_id, False, Feedback.TIMEOUT)

    def annotate(self, event_id: int, is_pothole: bool, feedback: Feedback):
        """
        Store an annotation for an emitted detection.

        Raises:
            RecorderStateError if no session is recording
            UnknownEventError if event_id was never emitted this session
        """
        with self._annotation_lock:
            if not self._active or self.session is None:
                raise RecorderStateError("Annotations can only be recorded during an active session")
            if all(event.elapsed_ms != event_id for event in self.session.detections):
                raise UnknownEventError(f"No detection at {event_id} ms in this session")
            self.session.annotations.record(event_id, is_pothole, feedback)

    def stop(self) -> Optional[ExportResult]:
        """
        End the session: halt sampling, apply annotations, export.

        A second call after a completed stop is a no-op that returns the
        earlier result.

        Returns:
            ExportResult, or None when a previous export failed

        Raises:
            RecorderStateError if no session was ever started
            ExportError if the export could not be written (see retry_export)
        """
        with self._lifecycle_lock:
            return self._stop_locked()

    def retry_export(self, output_dir: Optional[Path] = None) -> ExportResult:
        """
        Write the finished session again, e.g. after an ExportError.

        Args:
            output_dir: Alternative primary directory

        Raises:
            RecorderStateError if there is no finished session
            ExportError if the export fails again
        """
        with self._lifecycle_lock:
            if self._active or self.session is None or self._trailer is None:
                raise RecorderStateError("No finished session to export")
            return self._export(output_dir)

    def get_status(self) -> dict:
        """Summary of the recorder for logging / UI display."""
        session = self.session
        return {
            'recording': self._active,
            'recording_id': session.recording_id if session else None,
            'frames': session.frame_count if session else 0,
            'detections': len(session.detections) if session else 0,
            'annotations': len(session.annotations) if session else 0,
            'orientation': session.orientation.label.value if session else None,
            'orientation_confidence': session.orientation.confidence if session else None,
            'detector': self.detector.get_status() if self.detector else None,
            'scheduler': self.scheduler.get_status() if self.scheduler else None,
            'source': self.source.get_status(),
        }

    # -----------------------------------------------------------------------
    # Private: lifecycle
    # -----------------------------------------------------------------------

    def _stop_locked(self) -> Optional[ExportResult]:
        if self.session is None:
            raise RecorderStateError("No recording session to stop")

        if not self._active:
            logger.warning("Recording already stopped — returning previous result")
            return self._last_result

        logger.info("Stopping recording session...")

        self._deactivate()
        if self.scheduler:
            self.scheduler.stop()

        try:
            self.source.stop()
        except Exception as e:
            logger.error(f"✗ Error stopping sensor source: {e}", exc_info=True)

        session = self.session
        session.end_time = self.clock.wall_time()
        session.duration_ms = self.clock.elapsed_ms(session.start_ms)

        session.annotations.apply(session.frames)
        self._trailer = self._build_trailer(session)

        try:
            result = self._export()
        finally:
            self.bus.publish(SessionStopped(
                recording_id=session.recording_id,
                export_path=self._last_result.path if self._last_result else None,
                frame_count=session.frame_count,
            ))
            self.bus.stop()

        logger.info(f"✓ Recording stopped: {session.frame_count} frames, "
                    f"{len(session.detections)} detections, {len(session.annotations)} annotations")
        return result

    def _deactivate(self):
        """
        End frame production and annotation intake.

        Once this returns no tick is mid-frame and no annotation is
        mid-write.
        """
        with self._annotation_lock, self._tick_lock:
            self._active = False

    def _export(self, output_dir: Optional[Path] = None) -> ExportResult:
        session = self.session
        writer = SessionExportWriter(output_dir or self.config.output_dir, self.config.fallback_dir)

        try:
            path, used_fallback = writer.write(session.start_time, session.frames, self._trailer)
        except ExportError as e:
            logger.error(f"✗ Export failed, {session.frame_count} frames kept in memory: {e}")
            raise

        result = ExportResult(
            recording=RecordingInfo(
                id=session.recording_id,
                sensor_data_path=str(path),
                timestamp=session.start_time,
            ),
            frame_count=session.frame_count,
            annotation_count=len(session.annotations),
            detection_count=len(session.detections),
            metadata={key: format_cell(value) for key, value in self._trailer},
            used_fallback=used_fallback,
        )
        self._last_result = result

        if self.catalog is not None:
            self.catalog.add_recording(
                result,
                duration_ms=session.duration_ms,
                orientation=session.orientation.label.value,
            )
        return result

    def _on_scheduler_error(self, error: SchedulerError):
        """Timer failure: fatal to the session, export what was captured."""
        self.last_error = error
        session = self.session
        if session is not None:
            session.error = str(error)
            self.bus.publish(SessionFailed(session.recording_id, str(error)))

        if not self._lifecycle_lock.acquire(blocking=False):
            # A caller is already stopping the session
            self._deactivate()
            return
        try:
            self._stop_locked()
        except ExportError as e:
            logger.error(f"✗ Best-effort export after scheduler failure failed: {e}")
        finally:
            self._lifecycle_lock.release()

    # -----------------------------------------------------------------------
    # Private: per-tick helpers
    # -----------------------------------------------------------------------

    def _produce_frame(self) -> Optional[Frame]:
        """One atomic tick; caller holds _tick_lock."""
        session = self.session
        now_ms = self.clock.now_ms()
        elapsed_ms = self.clock.elapsed_ms(session.start_ms, now_ms)

        self._check_sources(elapsed_ms)

        accel_sample = self.source.accel.get()
        if accel_sample is None:
            return None
        gyro_sample = self.source.gyro.get()
        location = self.source.location.get()

        raw_accel = accel_sample.vector
        gyro = gyro_sample.vector if gyro_sample is not None else None

        if not self.calibrator.accel_complete:
            self.calibrator.add_accel(raw_accel)
        if gyro is not None and not self.calibrator.gyro_complete:
            self.calibrator.add_gyro(gyro)

        corrected = correct_axes(raw_accel, self.calibrator.frozen_label)
        frame = Frame(
            elapsed_ms=elapsed_ms,
            accel=corrected,
            accel_magnitude=magnitude(corrected),
            gyro=gyro,
            gps=(location.x, location.y) if location is not None else None,
        )
        session.frames.append(frame)
        self._tick_rate.mark(now_ms)

        event = self.detector.process(frame.accel_magnitude, elapsed_ms)
        if event is not None:
            session.detections.append(event)
            self._outbox.append(PotholeDetected(event.elapsed_ms))

        return frame

    def _check_sources(self, elapsed_ms: int):
        if elapsed_ms < self.config.source_timeout_ms:
            return
        session = self.session
        for cell in (self.source.accel, self.source.gyro):
            if cell.get() is None and cell.name not in session.unavailable_sources:
                session.unavailable_sources.append(cell.name)
                logger.warning(f"⚠ No {cell.name} data after {elapsed_ms} ms — "
                               f"session continues without it")
                self._outbox.append(SourceUnavailable(cell.name, elapsed_ms))

    def _on_calibration_progress(self, state: OrientationState, samples: int):
        # Only called from inside a tick
        self._outbox.append(CalibrationProgress(
            label=state.label,
            confidence=state.confidence,
            accel_offsets=state.accel_offsets,
            gyro_offsets=state.gyro_offsets,
            samples=samples,
            frozen=state.frozen,
            motion_warning=state.motion_warning,
        ))

    # -----------------------------------------------------------------------
    # Private: metadata
    # -----------------------------------------------------------------------

    def _build_trailer(self, session: Session) -> List[Tuple[str, object]]:
        orientation = session.orientation
        trailer: List[Tuple[str, object]] = [
            ('schema_version', SCHEMA_VERSION),
            ('recording_id', session.recording_id),
            ('start_timestamp', session.start_time.isoformat(timespec='milliseconds')),
            ('end_timestamp', session.end_time.isoformat(timespec='milliseconds')),
            ('duration_ms', session.duration_ms),
            ('sampling_rate_hz', self._tick_rate.rate_hz()),
            ('target_sampling_rate_hz', self.config.target_rate_hz),
            ('accel_rate_hz', self.source.accel.rate_hz()),
            ('gyro_rate_hz', self.source.gyro.rate_hz()),
            ('frame_count', session.frame_count),
            ('detection_count', len(session.detections)),
            ('annotation_count', len(session.annotations)),
            ('orientation', orientation.label.value),
            ('orientation_confidence', round(orientation.confidence, 2)),
            ('orientation_motion_warning', orientation.motion_warning),
        ]
        for axis, value in zip('xyz', orientation.accel_offsets):
            trailer.append((f'accel_offset_{axis}', round(value, 6)))
        for axis, value in zip('xyz', orientation.gyro_offsets):
            trailer.append((f'gyro_offset_{axis}', round(value, 6)))
        trailer.append(('unavailable_sources', ';'.join(session.unavailable_sources)))
        trailer.append(('session_error', session.error))
        for key, value in sorted(session.device_info.items()):
            trailer.append((f'device_{key}', value))
        return trailer

    # -----------------------------------------------------------------------
    # Dunder helpers
    # -----------------------------------------------------------------------

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._active:
            self.stop()

    def __repr__(self):
        status = "recording" if self._active else "idle"
        frames = self.session.frame_count if self.session else 0
        return f"<SessionRecorder(status={status}, frames={frames})>"
