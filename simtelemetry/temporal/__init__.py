"""
Temporal Layer
==============

Injectable clocks. Server time is the only time source the core trusts.
"""

from .clock import Clock, SystemClock, ManualClock

__all__ = [
    'Clock',
    'SystemClock',
    'ManualClock',
]
