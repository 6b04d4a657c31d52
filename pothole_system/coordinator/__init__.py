"""
Pothole System Sampling Coordinator
Session clock and the fixed-rate sampling timer
"""

from .clock import RateMeter, SessionClock
from .scheduler import SamplingScheduler

__all__ = [
    'RateMeter',
    'SessionClock',
    'SamplingScheduler',
]
