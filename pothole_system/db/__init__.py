"""
Recording Catalog Database
SQLAlchemy models and access layer for exported recordings
"""

from .connection import get_db_connection
from .models import Base, Recording
from .catalog import RecordingCatalog

__all__ = [
    'get_db_connection',
    'Base',
    'Recording',
    'RecordingCatalog',
]
