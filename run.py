"""
Pothole Detector - Main Entry Point
Runs one recording session from the command line:
  1. Open the recording catalog
  2. Start the raw sensor source (MPU6050 or replay file)
  3. Start the session recorder (calibration, detection, frame log)
  4. Prompt the operator on the console for each detection
  5. Stop after --duration seconds or Ctrl+C
  6. Export the annotated session and register it in the catalog

Usage:
    python run.py --duration 600
    python run.py --replay drive.csv --output-dir exports --threshold 4.0
    python run.py --list
"""

import argparse
import csv
import logging
import platform
import signal
import sys
import threading
from pathlib import Path

from pothole_system.config import SessionConfig
from pothole_system.db import RecordingCatalog
from pothole_system.errors import ExportError
from pothole_system.events import (
    CalibrationProgress,
    EventBus,
    SessionFailed,
    SourceUnavailable,
)
from pothole_system.prompts import PromptManager
from pothole_system.recorder import SessionRecorder
from pothole_system.sensors.source import ReplaySource

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger('pothole')


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def load_replay(path: Path) -> list:
    """Read offset_s,stream,x,y,z rows (header optional) for ReplaySource."""
    samples = []
    with open(path, newline='') as f:
        for row in csv.reader(f):
            if not row or row[0] == 'offset_s':
                continue
            offset_s, stream, x, y, z = row[:5]
            samples.append((float(offset_s), stream, float(x), float(y), float(z)))
    return samples


def device_info() -> dict:
    return {
        'host': platform.node(),
        'system': f"{platform.system()} {platform.release()}",
        'machine': platform.machine(),
        'python': platform.python_version(),
    }


def build_source(args):
    if args.replay:
        samples = load_replay(args.replay)
        logger.info(f"Replaying {len(samples)} samples from {args.replay}")
        return ReplaySource(samples, loop=args.loop)

    from pothole_system.sensors.mpu6050 import MPU6050Config, MPU6050Source
    return MPU6050Source(MPU6050Config(i2c_bus=args.i2c_bus))


def build_config(args) -> SessionConfig:
    config = SessionConfig.for_bench_test() if args.bench else SessionConfig.for_session()
    config.bump_threshold = args.threshold
    config.output_dir = args.output_dir
    return config.validate()


def console_prompts(prompts: PromptManager, stop_event: threading.Event):
    """Read y/n answers from stdin for the open prompt."""
    for line in sys.stdin:
        if stop_event.is_set():
            return
        event_id = prompts.current_event
        answer = line.strip().lower()
        if event_id is None or answer not in ('y', 'n'):
            continue
        prompts.answer(event_id, confirmed=(answer == 'y'))


def print_recordings(catalog: RecordingCatalog):
    recordings = catalog.list_recordings()
    if not recordings:
        print("No recordings catalogued.")
        return
    for info in recordings:
        print(f"{info.timestamp:%Y-%m-%d %H:%M:%S}  {info.id}  {info.sensor_data_path}")


# ------------------------------------------------------------------
# Main
# ------------------------------------------------------------------

def main():
    defaults = SessionConfig.for_session()

    parser = argparse.ArgumentParser(description='Pothole detector recording session')
    parser.add_argument('--duration', type=float, default=None,
                        help='Stop after this many seconds (default: until Ctrl+C)')
    parser.add_argument('--threshold', type=float, default=defaults.bump_threshold,
                        help=f'Bump threshold in m/s² (default: {defaults.bump_threshold})')
    parser.add_argument('--output-dir', type=Path, default=defaults.output_dir,
                        help=f'Export directory (default: {defaults.output_dir})')
    parser.add_argument('--replay', type=Path, default=None,
                        help='Replay raw samples from CSV instead of reading the MPU6050')
    parser.add_argument('--loop', action='store_true', help='Loop the replay file')
    parser.add_argument('--i2c-bus', type=int, default=1, help='MPU6050 I2C bus (default: 1)')
    parser.add_argument('--bench', action='store_true',
                        help='Short calibration windows for desk checks')
    parser.add_argument('--catalog', default='sqlite:///recordings.db',
                        help='Recording catalog database URL')
    parser.add_argument('--list', action='store_true', help='List catalogued recordings and exit')
    parser.add_argument('--log-file', type=Path, default=None, help='Also log to this file')
    args = parser.parse_args()

    if args.log_file:
        fh = logging.FileHandler(args.log_file)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(fh)

    catalog = RecordingCatalog(args.catalog)
    if args.list:
        print_recordings(catalog)
        catalog.close()
        return

    print()
    print("=" * 50)
    print("  Pothole Detector")
    print("=" * 50)
    print()

    config = build_config(args)
    bus = EventBus()
    recorder = SessionRecorder(build_source(args), bus=bus, catalog=catalog)

    def ask(event_id):
        print(f"\n>>> Possible pothole at {event_id / 1000:.1f}s — pothole? [y/n] "
              f"(auto-dismiss in {config.prompt_timeout_s:.0f}s)", flush=True)

    def on_progress(event: CalibrationProgress):
        print(f"Calibrating: {event.label.value} {event.confidence:.0f}%"
              f"{' (frozen)' if event.frozen else ''}", flush=True)

    prompts = PromptManager(recorder, ask=ask)
    prompts.attach(bus)
    bus.subscribe(CalibrationProgress, on_progress)
    bus.subscribe(SourceUnavailable, lambda e: print(f"⚠ No {e.stream} data — degraded session"))

    done = threading.Event()
    bus.subscribe(SessionFailed, lambda e: done.set())

    def _shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping recording...")
        done.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    threading.Thread(target=console_prompts, args=(prompts, done), daemon=True).start()

    recorder.start(config, device_info=device_info())
    try:
        done.wait(timeout=args.duration)
    finally:
        prompts.flush()
        try:
            result = recorder.stop()
            if result:
                print(f"\n✓ Recording saved to {result.path}")
        except ExportError as e:
            logger.error(f"Export failed ({e}); retrying in the current directory")
            result = recorder.retry_export(Path.cwd())
            print(f"\n✓ Recording saved to {result.path}")
        finally:
            catalog.close()


if __name__ == '__main__':
    main()
