"""
Session Export Reader
Loads a sensor_data.csv export back into a DataFrame plus its metadata
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Tuple

import pandas as pd

from .writer import FRAME_COLUMNS, SCHEMA_VERSION

logger = logging.getLogger(__name__)

_NUMERIC_COLUMNS = [c for c in FRAME_COLUMNS if c not in ('is_pothole', 'user_feedback')]


def load_session(path) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Parse an export file.

    Data rows are the ones whose first cell is an integer elapsed_ms;
    everything after the last data row is key/value metadata.

    Args:
        path: Path to sensor_data.csv

    Returns:
        (frames DataFrame with FRAME_COLUMNS, metadata dict)

    Raises:
        ValueError if the header or schema version is not recognised
    """
    path = Path(path)
    with open(path, newline='', encoding='utf-8') as f:
        rows = list(csv.reader(f))

    if not rows or rows[0] != FRAME_COLUMNS:
        raise ValueError(f"{path} does not start with the expected header")

    data_rows = []
    metadata: Dict[str, str] = {}
    for row in rows[1:]:
        if not row:
            continue
        if not metadata and row[0].isdigit():
            data_rows.append(row)
        else:
            metadata[row[0]] = row[1] if len(row) > 1 else ''

    version = metadata.get('schema_version')
    if version is not None and int(version) != SCHEMA_VERSION:
        raise ValueError(f"Unsupported schema version {version} in {path}")

    frames = pd.DataFrame(data_rows, columns=FRAME_COLUMNS)
    for column in _NUMERIC_COLUMNS:
        frames[column] = pd.to_numeric(frames[column], errors='coerce')
    frames['elapsed_ms'] = frames['elapsed_ms'].astype('int64')

    logger.info(f"Loaded {len(frames)} frames and {len(metadata)} metadata rows from {path}")
    return frames, metadata
