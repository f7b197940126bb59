"""Time abstraction layer"""

from .clock import Clock, RealTimeClock, utc_now, ensure_utc

__all__ = [
    'Clock',
    'RealTimeClock',
    'utc_now',
    'ensure_utc',
]
