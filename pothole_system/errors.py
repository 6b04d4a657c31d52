"""
Pothole System Errors
Caller errors, export failures and fatal scheduler failures
"""

from typing import List, Optional


class PotholeSystemError(Exception):
    """Base class for all errors raised by the recording core."""


class ConfigError(PotholeSystemError, ValueError):
    """A SessionConfig value is out of range or inconsistent."""


class RecorderStateError(PotholeSystemError):
    """Invalid lifecycle transition (start while active, respond while idle, ...)."""


class UnknownEventError(PotholeSystemError, KeyError):
    """A prompt response referenced a detection that was never emitted."""

    def __str__(self):
        return str(self.args[0]) if self.args else ''


class SchedulerError(PotholeSystemError):
    """The periodic sampling timer failed; fatal to the active session."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ExportError(PotholeSystemError):
    """
    The session export could not be written to any location.

    The recorder keeps the finished session in memory when this is raised,
    so the caller can fix the problem and call retry_export().
    """

    def __init__(self, message: str, attempted_paths: Optional[List[str]] = None):
        super().__init__(message)
        self.attempted_paths = attempted_paths or []
