"""
Recording catalog ORM models
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Recording(Base):
    """One exported recording session."""

    __tablename__ = 'recordings'

    recording_id = Column(String(36), primary_key=True)
    started_at = Column(DateTime, nullable=False, index=True)
    sensor_data_path = Column(String, nullable=False)
    video_path = Column(String, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    frame_count = Column(Integer, nullable=False, default=0)
    detection_count = Column(Integer, nullable=False, default=0)
    annotation_count = Column(Integer, nullable=False, default=0)
    orientation = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Recording({self.recording_id}, frames={self.frame_count})>"
