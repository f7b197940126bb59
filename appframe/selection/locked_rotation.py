"""
Locked rotation: hand each concurrent requester an item nobody else holds.

CRITICAL PROPERTIES:
1. At most one holder per item index at any instant
2. At most len(items) requests admitted concurrently; the rest wait FIFO
3. An item becomes available again only when its holder calls release()
4. A request whose timeout elapses before admission gets exactly one
   callback (LockTimeoutError, item None, no-op release)
5. The timed-out request keeps its queue position; when the queue reaches
   it, the slot is skipped without a callback and without taking a lock
6. Callbacks never run synchronously inside next(); admission happens on
   a later event loop iteration

Single-threaded: "locking" is logical ordering on the asyncio loop, not
OS-level mutual exclusion. Construct and use from one loop.
"""

from __future__ import annotations

import asyncio
import random
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Callable,
    Deque,
    Generic,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from appframe.codes.errors import CorruptedStateError, LockTimeoutError
from appframe.logging import get_logger, LogStream

from .rotation import validate_items

if TYPE_CHECKING:
    from appframe.codes.registry import CodeRegistry

T = TypeVar("T")

Release = Callable[[], None]
LockCallback = Callable[[Optional[LockTimeoutError], Optional[Any], Release], Any]

logger = get_logger(LogStream.SELECTION)


def _noop_release() -> None:
    return None


@dataclass
class LockRequest:
    """One pending or serviced call to LockedRotationQueue.next()."""
    callback: LockCallback
    timeout: Optional[float] = None
    fired: bool = False              # callback already invoked (or abandoned)
    index: Optional[int] = None      # locked index once admitted
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def timed_out(self) -> bool:
        return self.fired and self.index is None


class LockedRotationQueue(Generic[T]):
    """
    Asynchronous mutual-exclusion rotation with timeouts.

    USAGE:
        queue = LockedRotationQueue(["conn-a", "conn-b"])

        def on_item(err, conn, release):
            if err:
                return  # LockTimeoutError, nothing to release
            use(conn)
            release()

        queue.next(on_item, timeout=2.0)

        # Or, inside a coroutine:
        async with queue.lease(timeout=2.0) as conn:
            await use(conn)
    """

    def __init__(self, items: Sequence[T], *, rng: Optional[random.Random] = None,
                 codes: Optional["CodeRegistry"] = None):
        self._items: Tuple[T, ...] = validate_items(items, codes)
        self._indices: Set[int] = set(range(len(self._items)))
        self._rng = rng or random.Random()
        self._codes = codes

        self.locked: Set[int] = set()
        self._pending: Deque[LockRequest] = deque()
        self._active = 0
        self._concurrency = len(self._items)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._drain_scheduled = False
        self._tasks: Set[asyncio.Task] = set()

    # -- introspection -------------------------------------------------------

    @property
    def items(self) -> Tuple[T, ...]:
        return self._items

    @property
    def locked_count(self) -> int:
        return len(self.locked)

    @property
    def active_count(self) -> int:
        """Requests currently admitted and holding an item."""
        return self._active

    @property
    def pending_count(self) -> int:
        """Queued requests still waiting for a callback."""
        return sum(1 for request in self._pending if not request.fired)

    def __len__(self) -> int:
        return len(self._items)

    # -- public API ----------------------------------------------------------

    def next(self, callback: LockCallback, timeout: Optional[float] = None) -> LockRequest:
        """
        Queue a request for the next unlocked item.

        Args:
            callback: Called once as callback(error, item, release). On
                success error is None and release() must be called to
                unlock the item. May be a coroutine function.
            timeout: Seconds to wait for admission before the callback
                receives LockTimeoutError. None waits forever.

        Returns:
            The queued LockRequest
        """
        loop = self._get_loop()
        request = LockRequest(callback=callback, timeout=timeout)
        if timeout is not None:
            request.timer = loop.call_later(timeout, self._expire, request)

        self._pending.append(request)
        self._schedule_drain()
        return request

    @asynccontextmanager
    async def lease(self, timeout: Optional[float] = None) -> AsyncIterator[T]:
        """
        Hold an item for the duration of an ``async with`` block.

        Raises:
            LockTimeoutError: If not admitted within *timeout*
        """
        loop = self._get_loop()
        future: asyncio.Future = loop.create_future()

        def on_ready(error, item, release):
            if future.done():
                release()
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result((item, release))

        request = self.next(on_ready, timeout)
        try:
            item, release = await future
        except asyncio.CancelledError:
            # Admitted before the task resumed: the lock is already held.
            if future.done() and not future.cancelled() and future.exception() is None:
                future.result()[1]()
            self._abandon(request)
            raise

        try:
            yield item
        finally:
            release()

    # -- internals -----------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        return self._loop

    def _schedule_drain(self) -> None:
        if self._drain_scheduled or self._loop is None:
            return
        self._drain_scheduled = True
        self._loop.call_soon(self._drain)

    def _drain(self) -> None:
        """Admit waiting requests in FIFO order while admission slots are free."""
        self._drain_scheduled = False
        while self._pending and self._active < self._concurrency:
            request = self._pending.popleft()
            if request.fired:
                # timed out or abandoned: consume the slot as a no-op
                continue
            self._admit(request)

    def _admit(self, request: LockRequest) -> None:
        available = sorted(self._indices - self.locked)
        if not available:
            raise CorruptedStateError(locked=sorted(self.locked), active=self._active)

        index = self._rng.choice(available)
        self.locked.add(index)
        self._active += 1

        request.fired = True
        request.index = index
        if request.timer is not None:
            request.timer.cancel()
            request.timer = None

        release = self._make_release(index)
        logger.debug("Lock admitted", extra={"index": index, "locked": len(self.locked)})
        self._invoke(request, None, self._items[index], release)

    def _make_release(self, index: int) -> Release:
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self.locked.discard(index)
            self._active -= 1
            self._schedule_drain()

        return release

    def _expire(self, request: LockRequest) -> None:
        request.timer = None
        if request.fired:
            return
        request.fired = True

        data = {"timeout": request.timeout}
        if self._codes is not None:
            error = self._codes.make(LockTimeoutError, data)
        else:
            error = LockTimeoutError(**data)

        logger.warning(
            f"Lock request timed out after {request.timeout}s",
            extra={"timeout": request.timeout, "pending": self.pending_count}
        )
        self._invoke(request, error, None, _noop_release)

    def _abandon(self, request: LockRequest) -> None:
        if request.fired:
            return
        request.fired = True
        if request.timer is not None:
            request.timer.cancel()
            request.timer = None

    def _invoke(self, request: LockRequest, error, item, release: Release) -> None:
        try:
            result = request.callback(error, item, release)
        except Exception as e:
            logger.error(
                "Lock callback failed, releasing its item",
                extra={"error": str(e), "index": request.index},
                exc_info=True
            )
            release()
            return

        if asyncio.iscoroutine(result):
            task = self._loop.create_task(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._on_task_done(t, release))

    def _on_task_done(self, task: asyncio.Task, release: Release) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            release()
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async lock callback failed, releasing its item",
                extra={"error": str(exc)},
                exc_info=exc
            )
            release()
