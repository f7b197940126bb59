"""
Time abstraction layer for appframe.

Provides an injectable clock so occurrence timestamps (error monitor,
trigger history) are testable without patching datetime.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Abstract clock interface"""

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC)"""
        pass


class RealTimeClock(Clock):
    """Wall clock"""

    def now(self) -> datetime:
        """Current UTC time"""
        return utc_now()


def utc_now() -> datetime:
    """
    Canonical way to get the current UTC time as a timezone-aware datetime.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure *dt* is timezone-aware and in UTC.

    - If naive (no tzinfo): attach UTC (assumes caller meant UTC).
    - If aware but not UTC: convert to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
