"""
Session Export Writer
Serialises an annotated session to one CSV file per recording

Output layout:
    <output_dir>/
    └── Recording_<YYYYmmdd_HHMMSS>[_<n>]/
        └── sensor_data.csv

An existing recording is never overwritten; a clashing directory name
gets the next free numeric suffix.

File layout (schema version 1):
    header row           - FRAME_COLUMNS
    one row per frame    - time order, empty cells for absent values
    trailer rows         - key, value, padded with empty cells
"""

import csv
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pothole_system.errors import ExportError
from pothole_system.models import Frame

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

FRAME_COLUMNS = [
    'elapsed_ms',
    'accel_x', 'accel_y', 'accel_z',
    'accel_magnitude',
    'gyro_x', 'gyro_y', 'gyro_z',
    'gps_lat', 'gps_lon',
    'is_pothole',
    'user_feedback',
]

SENSOR_DATA_FILENAME = 'sensor_data.csv'
MAX_DIR_SUFFIX = 999


def recording_dirname(start_time) -> str:
    return f"Recording_{start_time.strftime('%Y%m%d_%H%M%S')}"


def claim_recording_dir(base_dir: Path, dirname: str) -> Path:
    """
    Create a recording directory that no other export uses.

    Sessions started within the same second share a dirname, so later
    ones get a numeric suffix: Recording_<ts>, Recording_<ts>_1, ...

    Raises:
        OSError if base_dir is not writable or every suffix is taken
    """
    base_dir.mkdir(parents=True, exist_ok=True)
    for suffix in range(MAX_DIR_SUFFIX + 1):
        candidate = base_dir / (dirname if suffix == 0 else f"{dirname}_{suffix}")
        try:
            candidate.mkdir()
            return candidate
        except FileExistsError:
            continue
    raise FileExistsError(f"No free recording directory for {dirname} in {base_dir}")


def format_cell(value) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def frame_row(frame: Frame) -> List[str]:
    """Flatten one frame into FRAME_COLUMNS order."""
    gyro = frame.gyro if frame.gyro is not None else (None, None, None)
    gps = frame.gps if frame.gps is not None else (None, None)
    values = [
        frame.elapsed_ms,
        *frame.accel,
        frame.accel_magnitude,
        *gyro,
        *gps,
        frame.is_pothole.value,
        frame.user_feedback.value,
    ]
    return [format_cell(v) for v in values]


def trailer_row(key: str, value) -> List[str]:
    row = [key, format_cell(value)]
    return row + [''] * (len(FRAME_COLUMNS) - len(row))


class SessionExportWriter:
    """
    Writes a finished session to disk in a single bulk write.

    The primary directory is tried first, then the fallback directory.
    When both fail an ExportError is raised; nothing the caller holds is
    modified, so the export can be retried.
    """

    def __init__(self, output_dir: Path, fallback_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir)
        self.fallback_dir = Path(fallback_dir) if fallback_dir else None

    def write(
            self,
            start_time,
            frames: Sequence[Frame],
            trailer: Sequence[Tuple[str, object]]
    ) -> Tuple[Path, bool]:
        """
        Write the export file.

        Args:
            start_time: Session start (names the recording directory)
            frames: Frames in time order
            trailer: Ordered (key, value) metadata rows

        Returns:
            (path written, True if the fallback directory was used)

        Raises:
            ExportError if no location was writable
        """
        rows = [list(FRAME_COLUMNS)]
        rows.extend(frame_row(frame) for frame in frames)
        rows.extend(trailer_row(key, value) for key, value in trailer)

        attempted = []
        errors = []
        candidates = [self.output_dir] + ([self.fallback_dir] if self.fallback_dir else [])

        dirname = recording_dirname(start_time)
        for index, base_dir in enumerate(candidates):
            path = base_dir / dirname / SENSOR_DATA_FILENAME
            try:
                path = claim_recording_dir(base_dir, dirname) / SENSOR_DATA_FILENAME
                with open(path, 'x', newline='', encoding='utf-8') as f:
                    csv.writer(f).writerows(rows)
            except OSError as e:
                attempted.append(str(path))
                logger.warning(f"⚠ Could not write export to {path}: {e}")
                errors.append(f"{path}: {e}")
                continue

            used_fallback = index > 0
            logger.info(f"✓ Exported {len(frames)} frames to {path}"
                        f"{' (fallback location)' if used_fallback else ''}")
            return path, used_fallback

        raise ExportError("Session export failed: " + "; ".join(errors), attempted_paths=attempted)
