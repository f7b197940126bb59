"""
Error threshold monitor: fire a callback when a code occurs too often.

INVARIANT:
    A rule fires at most once per triggered period. After firing it either
    re-arms on the next occurrence (reset >= 0, balance set to reset) or
    stays latched until decay brings its balance back to zero (reset < 0).

DESIGN:
    - Occurrences arrive from CodeRegistry as (kind, code_object).
    - Only (kind, code) pairs with at least one registered rule are tracked.
    - decay schedules a -1 on the balance after *decay* seconds, floored at
      zero. Reaching zero clears triggered.
    - Inert until enable(); no per-code state is kept while disabled.
    - Timestamps come from an injectable Clock.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from appframe.codes.errors import CodeKind, CodeObject
from appframe.logging import get_logger, LogStream
from appframe.time import Clock, RealTimeClock, ensure_utc

LimitCallback = Callable[["LimitSnapshot"], Any]
LimitKey = Tuple[CodeKind, str]

_rule_ids = itertools.count(1)


@dataclass
class LimitRule:
    """One threshold rule registered against a (kind, code) pair."""
    code: str
    kind: CodeKind
    threshold: int
    callback: LimitCallback
    decay: Optional[float] = None
    reset: int = 1
    id: str = ""

    # runtime state
    balance: int = 0
    triggered: bool = False
    triggered_at: List[datetime] = field(default_factory=list)

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.kind.value}:{self.code}#{next(_rule_ids)}"


@dataclass
class CodeStats:
    """Global occurrence stats for one (kind, code) pair."""
    occurrences: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


@dataclass(frozen=True)
class LimitSnapshot:
    """Merged global + rule state handed to a rule callback."""
    code: str
    kind: CodeKind
    rule_id: str
    occurrences: int
    first_seen: Optional[datetime]
    last_seen: Optional[datetime]
    threshold: int
    balance: int
    triggered: bool
    triggered_at: Tuple[datetime, ...]
    decay: Optional[float]
    reset: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "rule_id": self.rule_id,
            "occurrences": self.occurrences,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "threshold": self.threshold,
            "balance": self.balance,
            "triggered": self.triggered,
            "triggered_at": [t.isoformat() for t in self.triggered_at],
            "decay": self.decay,
            "reset": self.reset,
        }


class ErrorThresholdMonitor:
    """
    Counts code occurrences per rule and calls back on threshold.

    Usage:
        monitor = ErrorThresholdMonitor()
        monitor.attach(codes)
        monitor.register_limit("db.down", 3, on_db_flapping, decay=60.0)
        monitor.enable()
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.logger = get_logger(LogStream.MONITOR)
        self._clock = clock or RealTimeClock()
        self._enabled = False
        self._rules: Dict[LimitKey, List[LimitRule]] = {}
        self._stats: Dict[LimitKey, CodeStats] = {}
        self._decay_handles: Set[asyncio.TimerHandle] = set()
        self._attached: List[Any] = []

    # -- switches ------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> "ErrorThresholdMonitor":
        if not self._enabled:
            self._enabled = True
            self.logger.info("Error tracking enabled", extra={"rules": self.rule_count})
        return self

    def disable(self) -> "ErrorThresholdMonitor":
        self._enabled = False
        return self

    def attach(self, codes) -> "ErrorThresholdMonitor":
        """Subscribe to both occurrence kinds on a CodeRegistry."""
        for kind in CodeKind:
            codes.subscribe(kind, self.handle_occurrence)
        self._attached.append(codes)
        return self

    def close(self) -> None:
        """Cancel pending decays and unsubscribe from every attached registry."""
        for handle in self._decay_handles:
            handle.cancel()
        self._decay_handles.clear()
        for codes in self._attached:
            for kind in CodeKind:
                codes.unsubscribe(kind, self.handle_occurrence)
        self._attached.clear()

    # -- rules ---------------------------------------------------------------

    @property
    def rule_count(self) -> int:
        return sum(len(rules) for rules in self._rules.values())

    def register_limit(
        self,
        code: str,
        threshold: int,
        callback: LimitCallback,
        *,
        kind: Union[str, CodeKind] = CodeKind.ERROR_CODE,
        decay: Optional[float] = None,
        reset: int = 1,
    ) -> LimitRule:
        """
        Register a threshold rule.

        Args:
            code: Code to watch
            threshold: Balance at which the callback fires (>= 1)
            callback: Called with a LimitSnapshot when the rule triggers
            kind: errorCode or failCode
            decay: Seconds after which each occurrence stops counting
            reset: Balance after a triggered rule sees another occurrence;
                negative keeps the rule latched until decay clears it

        Returns:
            The registered LimitRule
        """
        if not code or not isinstance(code, str):
            raise TypeError("`code` must be a non-empty string")
        if not isinstance(threshold, int) or threshold < 1:
            raise ValueError(f"threshold must be a positive integer, got {threshold!r}")
        if decay is not None and decay <= 0:
            raise ValueError(f"decay must be positive seconds, got {decay!r}")
        if not callable(callback):
            raise TypeError("`callback` must be callable")

        rule = LimitRule(
            code=code,
            kind=CodeKind(kind),
            threshold=threshold,
            callback=callback,
            decay=decay,
            reset=reset,
        )
        self._rules.setdefault((rule.kind, code), []).append(rule)
        self.logger.debug(
            f"Limit registered: {rule.id}",
            extra={"threshold": threshold, "decay": decay, "reset": reset}
        )
        return rule

    def rules_for(self, kind: Union[str, CodeKind], code: str) -> List[LimitRule]:
        return list(self._rules.get((CodeKind(kind), code), []))

    def stats_for(self, kind: Union[str, CodeKind], code: str) -> Optional[CodeStats]:
        return self._stats.get((CodeKind(kind), code))

    # -- occurrences ---------------------------------------------------------

    def handle_occurrence(self, kind: CodeKind, code_object: CodeObject) -> None:
        """CodeRegistry subscriber."""
        self.record(kind, code_object.code, code_object.data)

    def record(
        self,
        kind: Union[str, CodeKind],
        code: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Count one occurrence of (kind, code) against its rules."""
        if not self._enabled:
            return

        key = (CodeKind(kind), code)
        rules = self._rules.get(key)
        if not rules:
            return

        loop = None
        if any(rule.decay is not None for rule in rules):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        now = ensure_utc(self._clock.now())
        stats = self._stats.setdefault(key, CodeStats())
        stats.occurrences += 1
        if stats.first_seen is None:
            stats.first_seen = now
        stats.last_seen = now

        for rule in rules:
            if rule.decay is not None:
                # A balance that can never decay would latch the rule.
                if loop is None:
                    self.logger.warning(
                        f"No running loop, occurrence not counted: {rule.id}",
                        extra={"rule": rule.id, "decay": rule.decay}
                    )
                    continue
                self._schedule_decay(rule, loop)
            rule.balance += 1
            self._evaluate(rule, stats, now, data or {})

    def _evaluate(self, rule: LimitRule, stats: CodeStats, now: datetime, data: Dict[str, Any]) -> None:
        if not rule.triggered and rule.balance >= rule.threshold:
            rule.triggered = True
            snapshot = self._snapshot(rule, stats, data)
            self.logger.warning(
                f"Limit reached: {rule.id}",
                extra={"balance": rule.balance, "threshold": rule.threshold,
                       "occurrences": stats.occurrences}
            )
            try:
                rule.callback(snapshot)
            except Exception as e:
                self.logger.error(
                    f"Limit callback failed: {rule.id}",
                    extra={"error": str(e)},
                    exc_info=True
                )
            rule.triggered_at.append(now)
        elif rule.triggered and rule.reset >= 0:
            rule.triggered = False
            rule.balance = rule.reset

    def _snapshot(self, rule: LimitRule, stats: CodeStats, data: Dict[str, Any]) -> LimitSnapshot:
        return LimitSnapshot(
            code=rule.code,
            kind=rule.kind,
            rule_id=rule.id,
            occurrences=stats.occurrences,
            first_seen=stats.first_seen,
            last_seen=stats.last_seen,
            threshold=rule.threshold,
            balance=rule.balance,
            triggered=rule.triggered,
            triggered_at=tuple(rule.triggered_at),
            decay=rule.decay,
            reset=rule.reset,
            data=dict(data),
        )

    # -- decay ---------------------------------------------------------------

    def _schedule_decay(self, rule: LimitRule, loop: asyncio.AbstractEventLoop) -> None:
        handle: Optional[asyncio.TimerHandle] = None

        def decrement():
            self._decay_handles.discard(handle)
            self._decay(rule)

        handle = loop.call_later(rule.decay, decrement)
        self._decay_handles.add(handle)

    def _decay(self, rule: LimitRule) -> None:
        rule.balance = max(0, rule.balance - 1)
        if rule.balance == 0:
            rule.triggered = False
