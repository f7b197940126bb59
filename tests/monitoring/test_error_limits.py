"""
ErrorThresholdMonitor – per-code occurrence thresholds

INVARIANT:
    A rule calls back once when its balance reaches the threshold. A
    triggered rule is re-armed by the next occurrence (balance = reset)
    or, with a negative reset, only by decay draining the balance to zero.

WHY THIS MATTERS:
    Limits are how an application notices a flapping dependency
    ("db.down 3 times in a minute"). A rule that fires on every occurrence
    floods the operator; one that never re-arms hides a second outage.

DESIGN:
    - Fed by CodeRegistry occurrences (errorCode and failCode)
    - Only codes with registered rules are tracked
    - Inert until enable()
"""

import asyncio

import pytest


@pytest.fixture
def monitor(codes, fake_clock):
    from appframe.monitoring import ErrorThresholdMonitor
    m = ErrorThresholdMonitor(clock=fake_clock).attach(codes)
    m.enable()
    yield m
    m.close()


class TestThresholds:

    def test_threshold_two_reset_one_four_occurrences_two_callbacks(self, monitor, codes):
        fired = []
        monitor.register_limit("db.down", 2, fired.append)

        for _ in range(4):
            codes.error_code("db.down")

        # 1: bal 1 | 2: bal 2 fire | 3: re-arm bal 1 | 4: bal 2 fire
        assert len(fired) == 2
        assert all(s.code == "db.down" for s in fired)

    def test_snapshot_merges_global_and_rule_state(self, monitor, codes, fake_clock):
        fired = []
        rule = monitor.register_limit("db.down", 2, fired.append)

        codes.error_code("db.down", {"host": "db1"})
        fake_clock.advance(seconds=5)
        codes.error_code("db.down", {"host": "db2"})

        snap = fired[0]
        assert snap.occurrences == 2
        assert snap.balance == 2
        assert snap.threshold == 2
        assert snap.triggered is True
        assert snap.triggered_at == ()
        assert (snap.last_seen - snap.first_seen).total_seconds() == 5
        assert snap.data == {"host": "db2"}
        assert snap.rule_id == rule.id
        assert rule.triggered_at == [fake_clock.now()]

    def test_negative_reset_stays_latched(self, monitor, codes):
        fired = []
        rule = monitor.register_limit("db.down", 1, fired.append, reset=-1)

        for _ in range(5):
            codes.error_code("db.down")

        assert len(fired) == 1
        assert rule.triggered is True
        assert rule.balance == 5

    def test_reset_zero_rearms_from_zero(self, monitor, codes):
        fired = []
        monitor.register_limit("db.down", 2, fired.append, reset=0)

        for _ in range(5):
            codes.error_code("db.down")

        # bal 1, 2 fire, re-arm 0, 1, 2 fire
        assert len(fired) == 2

    def test_multiple_rules_on_one_code(self, monitor, codes):
        low, high = [], []
        monitor.register_limit("db.down", 1, low.append)
        monitor.register_limit("db.down", 3, high.append)

        for _ in range(3):
            codes.error_code("db.down")

        assert len(low) == 2
        assert len(high) == 1
        assert monitor.stats_for("errorCode", "db.down").occurrences == 3

    def test_fail_code_rules_ignore_error_codes(self, monitor, codes):
        fired = []
        monitor.register_limit("db.slow", 1, fired.append, kind="failCode")

        codes.error_code("db.slow")
        assert fired == []

        codes.fail_code("db.slow")
        assert len(fired) == 1

    def test_codes_without_rules_are_not_tracked(self, monitor, codes):
        codes.error_code("db.slow")
        assert monitor.stats_for("errorCode", "db.slow") is None

    def test_callback_failure_is_isolated(self, monitor, codes):
        def bad(snapshot):
            raise RuntimeError("boom")

        rule = monitor.register_limit("db.down", 1, bad)
        codes.error_code("db.down")

        assert rule.triggered is True
        assert len(rule.triggered_at) == 1


class TestEnable:

    def test_disabled_monitor_is_inert(self, codes, fake_clock):
        from appframe.monitoring import ErrorThresholdMonitor
        m = ErrorThresholdMonitor(clock=fake_clock).attach(codes)
        fired = []
        rule = m.register_limit("db.down", 1, fired.append)

        codes.error_code("db.down")

        assert fired == []
        assert rule.balance == 0
        assert m.stats_for("errorCode", "db.down") is None

        m.enable()
        codes.error_code("db.down")
        assert len(fired) == 1

    def test_close_unsubscribes(self, monitor, codes):
        fired = []
        monitor.register_limit("db.down", 1, fired.append)
        monitor.close()

        codes.error_code("db.down")
        assert fired == []


class TestValidation:

    @pytest.mark.parametrize("threshold", [0, -1, 1.5])
    def test_rejects_bad_threshold(self, monitor, threshold):
        with pytest.raises(ValueError):
            monitor.register_limit("db.down", threshold, print)

    def test_rejects_bad_decay(self, monitor):
        with pytest.raises(ValueError):
            monitor.register_limit("db.down", 1, print, decay=0)

    def test_rejects_unknown_kind(self, monitor):
        with pytest.raises(ValueError):
            monitor.register_limit("db.down", 1, print, kind="warning")


class TestDecay:

    @pytest.mark.asyncio
    async def test_balance_decays_to_zero_and_clears_trigger(self, monitor, codes):
        fired = []
        rule = monitor.register_limit("db.down", 2, fired.append, decay=0.02, reset=-1)

        codes.error_code("db.down")
        codes.error_code("db.down")
        assert len(fired) == 1
        assert rule.triggered is True

        await asyncio.sleep(0.06)

        assert rule.balance == 0
        assert rule.triggered is False

        codes.error_code("db.down")
        codes.error_code("db.down")
        assert len(fired) == 2

    @pytest.mark.asyncio
    async def test_spaced_occurrences_never_reach_threshold(self, monitor, codes):
        fired = []
        monitor.register_limit("db.down", 2, fired.append, decay=0.01)

        for _ in range(3):
            codes.error_code("db.down")
            await asyncio.sleep(0.03)

        assert fired == []

    @pytest.mark.asyncio
    async def test_balance_floor_is_zero(self, monitor, codes):
        fired = []
        rule = monitor.register_limit("db.down", 1, fired.append, decay=0.01, reset=0)

        codes.error_code("db.down")   # bal 1, fire
        codes.error_code("db.down")   # re-arm, bal 0
        await asyncio.sleep(0.03)     # two decays on a zero balance

        assert rule.balance == 0

    def test_decay_rule_without_loop_does_not_starve_siblings(self, monitor, codes):
        decaying, plain = [], []
        slow = monitor.register_limit("db.down", 5, decaying.append, decay=1.0)
        fast = monitor.register_limit("db.down", 1, plain.append)

        codes.error_code("db.down")

        assert len(plain) == 1
        assert fast.triggered is True
        assert slow.balance == 0
        assert decaying == []
        assert monitor.stats_for("errorCode", "db.down").occurrences == 1
