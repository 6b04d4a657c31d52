"""
MPU6050 Sensor Source
3-axis accelerometer and gyroscope polled over I2C

The source converts register readings to m/s² and rad/s and pushes them
into the latest-value cells; the sampling scheduler reads them at its
own fixed rate.

Usage:
    source = MPU6050Source(MPU6050Config())
    recorder = SessionRecorder(source)
    recorder.start()
"""

from .source import MPU6050Source
from .config import MPU6050Config

__all__ = [
    'MPU6050Source',
    'MPU6050Config',
]
