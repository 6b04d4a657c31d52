"""
Pothole Detection System
Fixed-rate IMU recording with orientation calibration, bump detection
and post-hoc operator annotation.

Usage:
    recorder = SessionRecorder(source)
    recorder.start(SessionConfig.for_session())
    # ... drive ...
    result = recorder.stop()
"""

from .config import SessionConfig
from .events import EventBus
from .recorder import SessionRecorder

__all__ = [
    'SessionConfig',
    'EventBus',
    'SessionRecorder',
]

__version__ = '1.0.0'
