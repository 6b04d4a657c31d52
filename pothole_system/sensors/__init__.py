"""
Pothole System Sensors
Raw acceleration / angular-rate sources and the per-frame processing stages

Available sources:
- MPU6050: 3-axis accelerometer and gyroscope over I2C
- ReplaySource: recorded samples replayed in real time

Processing stages (in frame order):
- OrientationCalibrator: mount orientation from gravity
- correct_axes: canonical axis correction
- BumpDetector: adaptive-baseline candidate detection
"""

from .source import LatestValue, RawSensorSource, ReplaySource
from .orientation import OrientationCalibrator, correct_axes, magnitude
from .detector import BumpDetector

__all__ = [
    'LatestValue',
    'RawSensorSource',
    'ReplaySource',
    'OrientationCalibrator',
    'correct_axes',
    'magnitude',
    'BumpDetector',
]
