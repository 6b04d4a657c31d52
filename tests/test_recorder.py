"""
Session recorder tests

The scheduler is replaced by a manual one and time by a fake clock, so
every tick is driven explicitly from the test.
"""

import threading
import time
from pathlib import Path

import pytest

from pothole_system.config import SessionConfig
from pothole_system.coordinator.clock import SessionClock
from pothole_system.errors import ExportError, RecorderStateError, SchedulerError, UnknownEventError
from pothole_system.events import (
    CalibrationProgress,
    EventBus,
    PotholeDetected,
    SessionFailed,
    SessionStopped,
    SourceUnavailable,
)
from pothole_system.export.reader import load_session
from pothole_system.models import OrientationLabel
from pothole_system.recorder import SessionRecorder
from pothole_system.sensors.source import RawSensorSource

from conftest import GRAVITY, EventLog, ManualScheduler, drive

CALM = (0.0, 0.0, GRAVITY)


def detection_config(config):
    """Short calibration so a detection can be provoked in a few ticks."""
    return config.copy(orientation_window=10, detector_calibration_size=20, annotation_window_ms=300)


def provoke_detection(recorder, fake_time, source):
    """20 calm ticks, 50 rough ticks, then a spike on tick 71 (710 ms)."""
    drive(recorder, fake_time, source, 20, accel=CALM)
    for i in range(50):
        drive(recorder, fake_time, source, 1, accel=(0.0, 0.0, 8.61 if i % 2 else 11.01))
    drive(recorder, fake_time, source, 1, accel=(0.0, 0.0, 16.0))


class TestLifecycle:

    def test_start_returns_start_time_and_starts_scheduler(self, recorder, config):
        started = recorder.start(config)

        assert started.tzinfo is not None
        assert recorder.is_recording
        assert recorder.scheduler.is_running
        assert recorder.scheduler.interval_ms == 10

    def test_start_while_active_raises(self, recorder, config):
        recorder.start(config)
        with pytest.raises(RecorderStateError):
            recorder.start(config)

    def test_stop_without_start_raises(self, recorder):
        with pytest.raises(RecorderStateError):
            recorder.stop()

    def test_config_is_copied(self, recorder, config):
        recorder.start(config)
        assert recorder.config is not config
        assert recorder.config == config

    def test_stop_halts_scheduler_and_ticks(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 5)
        recorder.stop()

        assert not recorder.is_recording
        assert not recorder.scheduler.is_running
        assert drive(recorder, fake_time, source, 1) == [None]
        assert recorder.session.frame_count == 5

    def test_second_stop_returns_previous_result(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 5)

        first = recorder.stop()
        second = recorder.stop()

        assert second is first
        with open(first.path, encoding='utf-8') as f:
            assert sum(1 for line in f if line.startswith('schema_version')) == 1

    def test_new_session_starts_clean(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 5)
        first_id = recorder.stop().recording.id

        fake_time.advance(1000)
        recorder.start(config)
        assert recorder.session.recording_id != first_id
        assert recorder.session.frame_count == 0
        assert drive(recorder, fake_time, source, 1, accel=None) == [None]

    def test_context_manager_stops(self, recorder, config, fake_time, source):
        with recorder:
            recorder.start(config)
            drive(recorder, fake_time, source, 3)
        assert not recorder.is_recording


class TestFrames:

    def test_no_frame_until_acceleration_arrives(self, recorder, config, fake_time, source):
        recorder.start(config)
        assert drive(recorder, fake_time, source, 3, accel=None) == [None, None, None]

        frames = drive(recorder, fake_time, source, 1)

        assert recorder.session.frame_count == 1
        assert frames[0].elapsed_ms == 40

    def test_missing_gyroscope_leaves_field_empty(self, recorder, config, fake_time, source):
        recorder.start(config)
        frame = drive(recorder, fake_time, source, 1)[0]
        assert frame.gyro is None

        frame = drive(recorder, fake_time, source, 1, gyro=(0.1, 0.2, 0.3))[0]
        assert frame.gyro == (0.1, 0.2, 0.3)

    def test_location_is_attached_when_available(self, recorder, config, fake_time, source):
        recorder.start(config)
        source.push_location(52.5, 13.4)
        frame = drive(recorder, fake_time, source, 1)[0]
        assert frame.gps == (52.5, 13.4)

    def test_elapsed_time_is_strictly_increasing(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 50)

        times = [f.elapsed_ms for f in recorder.session.frames]
        assert times == list(range(10, 501, 10))

    def test_latest_value_is_reused_between_arrivals(self, recorder, config, fake_time, source):
        recorder.start(config)
        source.push_accel(0.5, 0.0, GRAVITY)
        drive(recorder, fake_time, source, 3, accel=None)

        frames = recorder.session.frames
        assert len(frames) == 3
        assert all(f.accel == (0.5, 0.0, GRAVITY) for f in frames)

    def test_landscape_mount_corrected_once_frozen(self, recorder, config, fake_time, source):
        recorder.start(config)
        frames = drive(recorder, fake_time, source, 12, accel=(GRAVITY, 0.0, 0.0))

        assert frames[8].accel == (GRAVITY, 0.0, 0.0)
        assert frames[9].accel == (0.0, -GRAVITY, 0.0)
        assert frames[11].accel == (0.0, -GRAVITY, 0.0)
        assert frames[11].accel_magnitude == pytest.approx(GRAVITY)
        assert recorder.orientation.label is OrientationLabel.LANDSCAPE_LEFT


class TestDetectionAndAnnotation:

    def test_detect_respond_export(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, PotholeDetected)
        recorder.start(detection_config(config))
        provoke_detection(recorder, fake_time, source)

        detections = log.of(PotholeDetected)
        assert [e.event_id for e in detections] == [710]

        recorder.respond_to_prompt(710, True)
        drive(recorder, fake_time, source, 49)
        result = recorder.stop()

        assert result.frame_count == 120
        assert result.detection_count == 1
        assert result.annotation_count == 1

        frames, metadata = load_session(result.path)
        confirmed = frames[frames['is_pothole'] == 'yes']['elapsed_ms']
        assert confirmed.min() == 410
        assert confirmed.max() == 1010
        assert set(frames[frames['is_pothole'] == 'yes']['user_feedback']) == {'user_confirmed'}
        assert frames.loc[frames['elapsed_ms'] == 400, 'is_pothole'].item() == ''
        assert frames.loc[frames['elapsed_ms'] == 1020, 'is_pothole'].item() == ''

        assert metadata['schema_version'] == '1'
        assert metadata['frame_count'] == '120'
        assert metadata['detection_count'] == '1'
        assert metadata['orientation'] == 'face_up'

    def test_timeout_response(self, recorder, config, fake_time, source):
        recorder.start(detection_config(config))
        provoke_detection(recorder, fake_time, source)
        recorder.prompt_timed_out(710)
        result = recorder.stop()

        frames, _ = load_session(result.path)
        row = frames[frames['elapsed_ms'] == 710].iloc[0]
        assert row['is_pothole'] == 'unmarked'
        assert row['user_feedback'] == 'timeout'

    def test_unknown_event_rejected(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 5)

        with pytest.raises(UnknownEventError):
            recorder.respond_to_prompt(1234, True)
        with pytest.raises(KeyError):
            recorder.prompt_timed_out(1234)

    def test_response_after_stop_rejected(self, recorder, config, fake_time, source):
        recorder.start(detection_config(config))
        provoke_detection(recorder, fake_time, source)
        recorder.stop()

        with pytest.raises(RecorderStateError):
            recorder.respond_to_prompt(710, True)

    def test_unanswered_detection_stays_unlabelled(self, recorder, config, fake_time, source):
        recorder.start(detection_config(config))
        provoke_detection(recorder, fake_time, source)
        result = recorder.stop()

        frames, metadata = load_session(result.path)
        assert set(frames['is_pothole']) == {''}
        assert metadata['annotation_count'] == '0'

    def test_stop_waits_for_annotation_in_progress(self, recorder, config, fake_time, source, monkeypatch):
        recorder.start(detection_config(config))
        provoke_detection(recorder, fake_time, source)

        store = recorder.session.annotations
        original_record = store.record
        writing = threading.Event()

        def slow_record(*args):
            writing.set()
            time.sleep(0.2)
            return original_record(*args)

        monkeypatch.setattr(store, 'record', slow_record)
        errors = []

        def answer():
            try:
                recorder.respond_to_prompt(710, True)
            except Exception as e:
                errors.append(e)

        responder = threading.Thread(target=answer)
        responder.start()
        assert writing.wait(timeout=5)
        result = recorder.stop()
        responder.join(timeout=5)

        assert errors == []
        assert result.annotation_count == 1
        frames, _ = load_session(result.path)
        assert (frames['is_pothole'] == 'yes').any()

    def test_stop_from_detection_handler(self, recorder, config, fake_time, source, bus):
        results = []
        bus.subscribe(PotholeDetected, lambda event: results.append(recorder.stop()))
        recorder.start(detection_config(config))

        worker = threading.Thread(target=provoke_detection, args=(recorder, fake_time, source), daemon=True)
        worker.start()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(results) == 1
        assert results[0].frame_count == 71
        assert results[0].detection_count == 1
        assert not recorder.is_recording

    def test_threshold_change_while_recording(self, recorder, config):
        recorder.start(config)
        recorder.set_threshold(7.0)
        assert recorder.detector.threshold == 7.0

        with pytest.raises(ValueError):
            recorder.set_threshold(11.0)

    def test_threshold_set_while_idle_applies_to_next_session(self, recorder, config):
        recorder.set_threshold(3.0)
        recorder.start(config)
        assert recorder.config.bump_threshold == 3.0
        assert recorder.detector.threshold == 3.0

    def test_threshold_out_of_range_while_idle(self, recorder):
        with pytest.raises(ValueError):
            recorder.set_threshold(0.5)


class TestExport:

    def test_metadata_trailer(self, recorder, config, fake_time, source):
        recorder.start(config, device_info={'model': 'pi-zero', 'os': 'linux'})
        drive(recorder, fake_time, source, 20)
        result = recorder.stop()

        metadata = result.metadata
        assert metadata['sampling_rate_hz'] == '100.0'
        assert metadata['target_sampling_rate_hz'] == '100.0'
        assert metadata['accel_rate_hz'] == '100.0'
        assert metadata['gyro_rate_hz'] == ''
        assert metadata['duration_ms'] == '200'
        assert metadata['device_model'] == 'pi-zero'
        assert metadata['device_os'] == 'linux'
        assert metadata['session_error'] == ''

        _, on_disk = load_session(result.path)
        assert on_disk == metadata

    def test_export_layout(self, recorder, config, fake_time, source):
        started = recorder.start(config)
        drive(recorder, fake_time, source, 2)
        result = recorder.stop()

        path = Path(result.path)
        assert path.name == 'sensor_data.csv'
        assert path.parent.name == f"Recording_{started.strftime('%Y%m%d_%H%M%S')}"
        assert path.parent.parent == config.output_dir
        assert not result.used_fallback

    def test_back_to_back_sessions_keep_separate_files(self, recorder, config, fake_time, source):
        recorder.start(config)
        drive(recorder, fake_time, source, 5)
        first = recorder.stop()

        recorder.start(config)
        drive(recorder, fake_time, source, 2)
        second = recorder.stop()

        assert first.path != second.path
        first_frames, first_meta = load_session(first.path)
        second_frames, second_meta = load_session(second.path)
        assert len(first_frames) == 5
        assert first_meta['recording_id'] == first.recording.id
        assert len(second_frames) == 2
        assert second_meta['recording_id'] == second.recording.id

    def test_export_failure_keeps_session_for_retry(self, recorder, config, fake_time, source, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        recorder.start(config.copy(output_dir=blocker))
        drive(recorder, fake_time, source, 10)

        with pytest.raises(ExportError) as excinfo:
            recorder.stop()
        assert excinfo.value.attempted_paths
        assert recorder.stop() is None

        result = recorder.retry_export(tmp_path / 'retry')
        assert result.frame_count == 10
        frames, _ = load_session(result.path)
        assert len(frames) == 10

    def test_fallback_directory(self, recorder, config, fake_time, source, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        recorder.start(config.copy(output_dir=blocker, fallback_dir=tmp_path / 'fallback'))
        drive(recorder, fake_time, source, 3)

        result = recorder.stop()

        assert result.used_fallback
        assert str(tmp_path / 'fallback') in result.path

    def test_retry_without_finished_session(self, recorder, config):
        with pytest.raises(RecorderStateError):
            recorder.retry_export()
        recorder.start(config)
        with pytest.raises(RecorderStateError):
            recorder.retry_export()

    def test_stopped_event_published(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, SessionStopped)
        recorder.start(config)
        drive(recorder, fake_time, source, 4)
        result = recorder.stop()

        stopped = log.of(SessionStopped)
        assert len(stopped) == 1
        assert stopped[0].export_path == result.path
        assert stopped[0].frame_count == 4


class TestFailures:

    def test_scheduler_failure_exports_partial_session(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, SessionFailed)
        recorder.start(config)
        drive(recorder, fake_time, source, 7)

        recorder._on_scheduler_error(SchedulerError('boom'))

        assert not recorder.is_recording
        assert [e.error for e in log.of(SessionFailed)] == ['boom']
        result = recorder.stop()
        assert result.frame_count == 7
        assert result.metadata['session_error'] == 'boom'

    def test_missing_gyroscope_reported_once(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, SourceUnavailable)
        recorder.start(config)
        drive(recorder, fake_time, source, 150)

        reports = log.of(SourceUnavailable)
        assert [(e.stream, e.elapsed_ms) for e in reports] == [('gyroscope', 1000)]
        assert recorder.session.frame_count == 150

        result = recorder.stop()
        assert result.metadata['unavailable_sources'] == 'gyroscope'

    def test_no_sensors_at_all(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, SourceUnavailable)
        recorder.start(config)
        drive(recorder, fake_time, source, 120, accel=None)

        assert sorted(e.stream for e in log.of(SourceUnavailable)) == ['accelerometer', 'gyroscope']
        result = recorder.stop()
        assert result.frame_count == 0

    def test_source_start_failure_degrades_session(self, config, fake_time, clock, bus):
        class BrokenSource(RawSensorSource):
            def start(self):
                raise OSError('no I2C bus')

        source = BrokenSource(clock)
        recorder = SessionRecorder(source, bus=bus, scheduler_factory=ManualScheduler)

        recorder.start(config)
        assert recorder.is_recording


class TestCalibrationEvents:

    def test_progress_published_during_calibration(self, recorder, config, fake_time, source, bus):
        log = EventLog(bus, CalibrationProgress)
        recorder.start(config)
        drive(recorder, fake_time, source, 150, gyro=(0.0, 0.0, 0.0))

        progress = log.of(CalibrationProgress)
        assert [p.samples for p in progress] == list(range(10, 101, 10))
        assert progress[-1].frozen
        assert progress[-1].label is OrientationLabel.FACE_UP


def test_real_scheduler_produces_frames(tmp_path):
    clock = SessionClock()
    source = RawSensorSource(clock)
    recorder = SessionRecorder(source, bus=EventBus())
    recorder.start(SessionConfig(output_dir=tmp_path, fallback_dir=None))

    deadline = time.monotonic() + 0.3
    while time.monotonic() < deadline:
        source.push_accel(0.0, 0.0, GRAVITY)
        time.sleep(0.005)
    result = recorder.stop()

    assert result.frame_count >= 5
    times = [f.elapsed_ms for f in recorder.session.frames]
    assert times == sorted(times)
    assert len(set(times)) == len(times)
