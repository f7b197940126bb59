"""
LockedRotationQueue – FIFO admission with per-item locks

INVARIANT:
    No two admitted requests ever hold the same item index. At most
    len(items) requests are admitted at once; the rest wait in FIFO order.
    A request that times out before admission is called back exactly once
    with LockTimeoutError and is never admitted later.

WHY THIS MATTERS:
    The queue hands out exclusive resources (connections, API keys,
    worker slots). A double hold means two tasks share a resource that
    must not be shared; a double callback means a caller that already
    gave up suddenly owns a lock nobody will release.

DESIGN:
    - Admission always happens on a later loop iteration
    - release() is idempotent and re-drains the queue
    - Timed-out requests keep their FIFO slot and are skipped when reached
"""

import asyncio

import pytest


def _collector():
    calls = []

    def callback(err, item, release):
        calls.append((err, item, release))

    return calls, callback


class TestAdmission:

    @pytest.mark.asyncio
    async def test_callbacks_never_fire_inside_next(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)
        calls, cb = _collector()

        queue.next(cb)
        assert calls == []

        await asyncio.sleep(0)
        assert len(calls) == 1
        assert calls[0][0] is None
        assert calls[0][1] == "a"

    @pytest.mark.asyncio
    async def test_three_items_three_immediate_fourth_waits(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a", "b", "c"], rng=rng)
        calls, cb = _collector()

        for _ in range(4):
            queue.next(cb)
        await asyncio.sleep(0)

        assert sorted(item for _, item, _ in calls) == ["a", "b", "c"]
        assert queue.locked_count == 3
        assert queue.pending_count == 1

        _, released_item, release = calls[1]
        release()
        await asyncio.sleep(0)

        assert len(calls) == 4
        assert calls[3][1] == released_item
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_fifo_order_of_waiters(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["only"], rng=rng)
        order = []
        holders = []

        def make_cb(tag):
            def cb(err, item, release):
                order.append(tag)
                holders.append(release)
            return cb

        for tag in ("first", "second", "third"):
            queue.next(make_cb(tag))

        await asyncio.sleep(0)
        for _ in range(2):
            holders[-1]()
            await asyncio.sleep(0)

        assert order == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a", "b"], rng=rng)
        calls, cb = _collector()

        queue.next(cb)
        queue.next(cb)
        await asyncio.sleep(0)
        assert queue.active_count == 2

        release = calls[0][2]
        release()
        release()
        await asyncio.sleep(0)

        assert queue.active_count == 1
        assert queue.locked_count == 1

    @pytest.mark.asyncio
    async def test_no_double_hold_under_churn(self):
        import random
        from appframe.selection import LockedRotationQueue

        items = ["k1", "k2", "k3"]
        queue = LockedRotationQueue(items, rng=random.Random(7))
        delays = random.Random(99)
        loop = asyncio.get_running_loop()

        held = set()
        max_held = 0
        violations = []
        done = asyncio.Event()
        remaining = [25]

        def cb(err, item, release):
            nonlocal max_held
            assert err is None
            if item in held:
                violations.append(item)
            held.add(item)
            max_held = max(max_held, len(held))

            def finish():
                held.discard(item)
                release()
                remaining[0] -= 1
                if remaining[0] == 0:
                    done.set()

            loop.call_later(delays.uniform(0, 0.01), finish)

        for _ in range(25):
            queue.next(cb)

        await asyncio.wait_for(done.wait(), timeout=5)

        assert violations == []
        assert max_held <= len(items)
        assert queue.locked_count == 0
        assert queue.active_count == 0


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timeout_fires_once_with_no_item(self, rng):
        from appframe.codes import LockTimeoutError
        from appframe.selection import LockedRotationQueue

        queue = LockedRotationQueue(["solo"], rng=rng)
        holder_calls, holder_cb = _collector()
        waiter_calls, waiter_cb = _collector()

        queue.next(holder_cb)
        request = queue.next(waiter_cb, timeout=0.02)
        await asyncio.sleep(0.05)

        assert len(waiter_calls) == 1
        err, item, noop_release = waiter_calls[0]
        assert isinstance(err, LockTimeoutError)
        assert err.code == "rotation.locked_timeout"
        assert item is None
        assert request.timed_out

        # the no-op release must not touch the real lock
        noop_release()
        assert queue.locked_count == 1

        holder_calls[0][2]()
        await asyncio.sleep(0)

        assert len(waiter_calls) == 1
        assert queue.locked_count == 0
        assert queue.active_count == 0

    @pytest.mark.asyncio
    async def test_timed_out_slot_skipped_and_next_waiter_admitted(self, rng):
        from appframe.selection import LockedRotationQueue

        queue = LockedRotationQueue(["solo"], rng=rng)
        holder_calls, holder_cb = _collector()
        late_calls, late_cb = _collector()
        patient_calls, patient_cb = _collector()

        queue.next(holder_cb)
        queue.next(late_cb, timeout=0.01)
        queue.next(patient_cb)
        await asyncio.sleep(0.03)

        assert len(late_calls) == 1
        assert patient_calls == []
        assert queue.pending_count == 1

        holder_calls[0][2]()
        await asyncio.sleep(0)

        assert len(late_calls) == 1
        assert len(patient_calls) == 1
        assert patient_calls[0][1] == "solo"
        assert queue.locked_count == 1

    @pytest.mark.asyncio
    async def test_admission_cancels_timeout(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)
        calls, cb = _collector()

        queue.next(cb, timeout=0.01)
        await asyncio.sleep(0.03)

        assert len(calls) == 1
        assert calls[0][0] is None

    @pytest.mark.asyncio
    async def test_timeout_emits_fail_code_through_registry(self, codes, rng):
        from appframe.codes import CodeKind
        from appframe.selection import LockedRotationQueue

        seen = []
        codes.subscribe(CodeKind.FAIL_CODE, lambda kind, obj: seen.append(obj.code))
        queue = LockedRotationQueue(["a"], rng=rng, codes=codes)
        _, holder_cb = _collector()
        _, waiter_cb = _collector()

        queue.next(holder_cb)
        queue.next(waiter_cb, timeout=0.01)
        await asyncio.sleep(0.03)

        assert seen == ["rotation.locked_timeout"]


class TestCallbackFailures:

    @pytest.mark.asyncio
    async def test_raising_callback_releases_its_item(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        def bad(err, item, release):
            raise RuntimeError("boom")

        queue.next(bad)
        await asyncio.sleep(0)
        assert queue.locked_count == 0

        calls, cb = _collector()
        queue.next(cb)
        await asyncio.sleep(0)
        assert calls[0][1] == "a"

    @pytest.mark.asyncio
    async def test_async_callback_failure_releases_item(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        async def bad(err, item, release):
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        queue.next(bad)
        await asyncio.sleep(0.01)
        assert queue.locked_count == 0
        assert queue.active_count == 0


class TestLease:

    @pytest.mark.asyncio
    async def test_lease_holds_for_block(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a", "b"], rng=rng)

        async with queue.lease() as item:
            assert item in ("a", "b")
            assert queue.locked_count == 1

        assert queue.locked_count == 0

    @pytest.mark.asyncio
    async def test_lease_raises_on_timeout(self, rng):
        from appframe.codes import LockTimeoutError
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        async with queue.lease():
            with pytest.raises(LockTimeoutError):
                async with queue.lease(timeout=0.01):
                    pass  # pragma: no cover

        assert queue.locked_count == 0

    @pytest.mark.asyncio
    async def test_lease_released_on_exception(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        with pytest.raises(ValueError):
            async with queue.lease():
                raise ValueError("inside")

        assert queue.locked_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_lease_does_not_leak_lock(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        async def hold():
            async with queue.lease():
                await asyncio.sleep(0.05)

        async def wait_forever():
            async with queue.lease():
                pass

        holder = asyncio.ensure_future(hold())
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(wait_forever())
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await holder
        await asyncio.sleep(0)
        assert queue.locked_count == 0
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancel_after_admission_releases_item(self, rng):
        from appframe.selection import LockedRotationQueue
        queue = LockedRotationQueue(["a"], rng=rng)

        async def use():
            async with queue.lease():
                pass

        task = asyncio.ensure_future(use())
        await asyncio.sleep(0)   # task enqueues its request
        await asyncio.sleep(0)   # admission hands over the item
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert queue.locked_count == 0
        assert queue.active_count == 0

        async with queue.lease(timeout=0.1) as item:
            assert item == "a"
