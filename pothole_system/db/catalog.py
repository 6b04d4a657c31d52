"""
Recording Catalog
Index of exported recordings, newest first
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from pothole_system.models import ExportResult, RecordingInfo

from .connection import DEFAULT_DB_URL, get_db_connection
from .models import Recording

logger = logging.getLogger(__name__)


class RecordingCatalog:
    """
    Database access layer for finished recordings.

    Usage:
        catalog = RecordingCatalog('sqlite:///recordings.db')
        catalog.add_recording(result)
        for info in catalog.list_recordings():
            ...
        catalog.close()
    """

    def __init__(self, url: str = DEFAULT_DB_URL):
        try:
            self.engine, self.session = get_db_connection(url)
            logger.info(f"✓ Connected to recording catalog ({url})")
        except SQLAlchemyError as e:
            logger.error(f"✗ Failed to open recording catalog: {e}")
            raise

    def add_recording(self, result: ExportResult, duration_ms: Optional[int] = None,
                      orientation: Optional[str] = None) -> Optional[Recording]:
        """
        Register an exported recording.

        Args:
            result: ExportResult returned by SessionRecorder.stop()
            duration_ms: Session duration
            orientation: Frozen orientation label

        Returns:
            The stored Recording row, or None if the write failed
        """
        info = result.recording
        try:
            row = self.session.get(Recording, info.id)
            if row is None:
                row = Recording(recording_id=info.id)
                self.session.add(row)
            row.started_at = info.timestamp
            row.sensor_data_path = info.sensor_data_path
            row.video_path = info.video_path
            row.duration_ms = duration_ms
            row.frame_count = result.frame_count
            row.detection_count = result.detection_count
            row.annotation_count = result.annotation_count
            row.orientation = orientation
            self.session.commit()
            logger.info(f"✓ Catalogued recording {info.id}")
            return row
        except SQLAlchemyError as e:
            logger.error(f"Error cataloguing recording {info.id}: {e}")
            self.session.rollback()
            return None

    def get_recording(self, recording_id: str) -> Optional[RecordingInfo]:
        row = self.session.get(Recording, recording_id)
        return self._to_info(row) if row else None

    def list_recordings(self) -> List[RecordingInfo]:
        """All recordings, newest first."""
        rows = self.session.query(Recording).order_by(Recording.started_at.desc()).all()
        return [self._to_info(row) for row in rows]

    def remove_recording(self, recording_id: str) -> bool:
        """
        Delete a catalog entry (the files on disk are left alone).

        Returns:
            True if a row was removed
        """
        try:
            row = self.session.get(Recording, recording_id)
            if row is None:
                return False
            self.session.delete(row)
            self.session.commit()
            logger.info(f"Removed recording {recording_id} from catalog")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error removing recording {recording_id}: {e}")
            self.session.rollback()
            return False

    def close(self):
        self.session.close()
        self.engine.dispose()

    @staticmethod
    def _to_info(row: Recording) -> RecordingInfo:
        return RecordingInfo(
            id=row.recording_id,
            sensor_data_path=row.sensor_data_path,
            video_path=row.video_path,
            timestamp=row.started_at,
        )
