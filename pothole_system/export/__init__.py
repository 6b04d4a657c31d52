"""
Session Export
CSV writer for finished sessions and a pandas reader for downstream tooling
"""

from .writer import FRAME_COLUMNS, SCHEMA_VERSION, SessionExportWriter
from .reader import load_session

__all__ = [
    'FRAME_COLUMNS',
    'SCHEMA_VERSION',
    'SessionExportWriter',
    'load_session',
]
