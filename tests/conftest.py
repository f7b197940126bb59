# tests/conftest.py
from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from appframe.codes import CodeRegistry
from appframe.time import Clock


# -------------------------
# Fakes
# -------------------------

class FakeClock(Clock):
    """Deterministic clock that can be advanced manually.

    Usage:
        clock = FakeClock(start=datetime(2026, 2, 9, 3, 0, tzinfo=timezone.utc))
        clock.advance(seconds=120)
        print(clock.now())  # 2026-02-09 03:02:00 UTC
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2026, 2, 9, 3, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self._now += timedelta(seconds=seconds, minutes=minutes)


class ExitRecorder:
    """Stands in for process exit; records requested exit codes."""

    def __init__(self) -> None:
        self.codes: List[int] = []

    def __call__(self, code: int) -> None:
        self.codes.append(code)

    @property
    def called(self) -> bool:
        return bool(self.codes)

    @property
    def last(self) -> Optional[int]:
        return self.codes[-1] if self.codes else None


# -------------------------
# Fixtures
# -------------------------

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def exit_recorder() -> ExitRecorder:
    return ExitRecorder()


@pytest.fixture
def codes() -> CodeRegistry:
    return CodeRegistry({"db.down": "Database unreachable.", "db.slow": "Database slow."})


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
