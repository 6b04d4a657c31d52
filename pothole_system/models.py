"""
Pothole System Data Models
Frames, orientation state, detections, annotations and the session aggregate
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from pothole_system.annotations import AnnotationStore

Vector3 = Tuple[float, float, float]


class PotholeLabel(str, Enum):
    """Value of the is_pothole column."""
    UNSET = ''
    YES = 'yes'
    NO = 'no'
    UNMARKED = 'unmarked'


class UserFeedback(str, Enum):
    """Value of the user_feedback column."""
    UNSET = ''
    USER_CONFIRMED = 'user_confirmed'
    USER_REJECTED = 'user_rejected'
    TIMEOUT = 'timeout'


class Feedback(str, Enum):
    """Operator response to a detection prompt."""
    YES = 'yes'
    NO = 'no'
    TIMEOUT = 'timeout'


# Feedback -> (is_pothole, user_feedback) written onto frames at session stop
FEEDBACK_LABELS: Dict[Feedback, Tuple[PotholeLabel, UserFeedback]] = {
    Feedback.YES: (PotholeLabel.YES, UserFeedback.USER_CONFIRMED),
    Feedback.NO: (PotholeLabel.NO, UserFeedback.USER_REJECTED),
    Feedback.TIMEOUT: (PotholeLabel.UNMARKED, UserFeedback.TIMEOUT),
}


class OrientationLabel(str, Enum):
    """Physical mount orientation derived from the gravity vector."""
    UNKNOWN = 'unknown'
    FACE_UP = 'face_up'
    FACE_DOWN = 'face_down'
    LANDSCAPE_LEFT = 'landscape_left'
    LANDSCAPE_RIGHT = 'landscape_right'
    PORTRAIT = 'portrait'
    PORTRAIT_DOWN = 'portrait_down'


@dataclass(frozen=True)
class RawSample:
    """One raw sensor reading as delivered by a RawSensorSource."""
    x: float
    y: float
    z: float
    arrival_ms: float  # monotonic milliseconds

    @property
    def vector(self) -> Vector3:
        return (self.x, self.y, self.z)


@dataclass
class Frame:
    """
    One fixed-rate output record.

    Sensor fields never change after the frame is appended. The two
    annotation fields move from UNSET to a terminal value exactly once,
    during post-processing at session stop.
    """
    elapsed_ms: int
    accel: Vector3
    accel_magnitude: float
    gyro: Optional[Vector3] = None
    gps: Optional[Tuple[float, float]] = None
    is_pothole: PotholeLabel = PotholeLabel.UNSET
    user_feedback: UserFeedback = UserFeedback.UNSET

    @property
    def is_annotated(self) -> bool:
        return self.user_feedback is not UserFeedback.UNSET

    def annotate(self, is_pothole: PotholeLabel, user_feedback: UserFeedback):
        """
        Apply an annotation to this frame.

        Raises:
            ValueError if the frame was already annotated or the target
            values are not terminal.
        """
        if self.is_annotated:
            raise ValueError(f"Frame at {self.elapsed_ms} ms is already annotated")
        if is_pothole is PotholeLabel.UNSET or user_feedback is UserFeedback.UNSET:
            raise ValueError("Annotation values must be terminal")
        self.is_pothole = is_pothole
        self.user_feedback = user_feedback


@dataclass
class OrientationState:
    """Mount orientation estimate; only the OrientationCalibrator mutates it."""
    label: OrientationLabel = OrientationLabel.UNKNOWN
    confidence: float = 0.0
    accel_offsets: Vector3 = (0.0, 0.0, 0.0)
    gyro_offsets: Vector3 = (0.0, 0.0, 0.0)
    frozen: bool = False
    motion_warning: bool = False


@dataclass(frozen=True)
class DetectionEvent:
    """Candidate pothole; elapsed_ms doubles as the event id."""
    elapsed_ms: int

    @property
    def event_id(self) -> int:
        return self.elapsed_ms


@dataclass(frozen=True)
class Annotation:
    """Operator response to one DetectionEvent."""
    event_elapsed_ms: int
    is_pothole: bool
    feedback: Feedback


@dataclass
class Session:
    """
    Aggregate root for one recording.

    start_ms is the monotonic reference every frame's elapsed_ms is
    computed from; it is captured once and never recomputed.
    """
    recording_id: str
    start_time: datetime
    start_ms: float
    annotations: 'AnnotationStore'
    orientation: OrientationState = field(default_factory=OrientationState)
    frames: List[Frame] = field(default_factory=list)
    detections: List[DetectionEvent] = field(default_factory=list)
    device_info: Dict[str, str] = field(default_factory=dict)
    unavailable_sources: List[str] = field(default_factory=list)
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None

    @property
    def frame_count(self) -> int:
        return len(self.frames)


@dataclass
class RecordingInfo:
    """Where a finished recording's files live."""
    id: str
    sensor_data_path: str
    timestamp: datetime
    video_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'videoPath': self.video_path,
            'sensorDataPath': self.sensor_data_path,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RecordingInfo':
        return cls(
            id=data['id'],
            video_path=data.get('videoPath'),
            sensor_data_path=data['sensorDataPath'],
            timestamp=datetime.fromisoformat(data['timestamp']),
        )


@dataclass
class ExportResult:
    """Outcome of a successful session export."""
    recording: RecordingInfo
    frame_count: int
    annotation_count: int
    detection_count: int
    metadata: Dict[str, str] = field(default_factory=dict)
    used_fallback: bool = False

    @property
    def path(self) -> str:
        return self.recording.sensor_data_path
