"""
Lifecycle registry: graceful/forced shutdown state machine.

ARCHITECTURE:
- Subsystems register() an id while they hold resources and
  deregister() it once closed
- stop() starts a graceful close; repeated stop() calls escalate
- exit() is terminal and hands the exit code to an injected exit_fn
- Subscribers get lifecycle events through subscribe(); no global bus

CRITICAL RULES:
1. IDLE -> SETUP -> RUNNING -> STOPPING -> EXITING, EXITING is terminal
2. A graceful exit fires only when the registry is empty and the
   machine is not running
3. The first repeated stop() arms a deadline of stop_timeout seconds
   that forces a non-graceful exit
4. Once stop_attempts repeated stops have been seen, exit is forced
   immediately
5. exit() runs once; later calls are ignored
6. Subscriber failures are logged and never break a transition
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from appframe.codes.errors import AlreadySetupError
from appframe.config.schema import LifecycleConfig
from appframe.logging import get_logger, LogStream


# ============================================================================
# STATES / EVENTS
# ============================================================================

class LifecycleState(Enum):
    """Lifecycle states."""
    IDLE = "IDLE"
    SETUP = "SETUP"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    EXITING = "EXITING"


class LifecycleEvent(Enum):
    """Notifications emitted to subscribers."""
    SETUP = "setup"
    READY = "ready"
    REGISTERED = "registered"
    DEREGISTERED = "deregistered"
    CLOSE = "close"
    EXIT = "exit"


@dataclass(frozen=True)
class LifecycleStatus:
    """Point-in-time view of the registry flags."""
    setup: bool
    running: bool
    stopping: bool
    stop_attempts: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setup": self.setup,
            "running": self.running,
            "stopping": self.stopping,
            "stop_attempts": self.stop_attempts,
        }


LifecycleHandler = Callable[[LifecycleEvent, Dict[str, Any]], Any]
ExitFn = Callable[[int], Any]


def default_exit(code: int) -> None:
    """Exit the process. Forced exits skip interpreter cleanup."""
    if code == 0:
        sys.exit(0)
    logging.shutdown()
    os._exit(code)


# ============================================================================
# REGISTRY
# ============================================================================

class LifecycleRegistry:
    """
    Tracks live subsystems and drives process termination.

    Usage:
        lifecycle = LifecycleRegistry(config.lifecycle)
        lifecycle.subscribe(LifecycleEvent.CLOSE, close_everything)
        lifecycle.register("http")
        lifecycle.ready()
        ...
        lifecycle.stop()            # CLOSE emitted, waits for deregister()
        lifecycle.deregister("http")  # last one out -> graceful exit
    """

    def __init__(
        self,
        config: Optional[LifecycleConfig] = None,
        *,
        exit_fn: Optional[ExitFn] = None,
        name: str = "app",
    ):
        self.config = config or LifecycleConfig()
        self.name = name
        self.logger = get_logger(LogStream.LIFECYCLE)

        self._exit_fn = exit_fn or default_exit
        self._subscribers: Dict[LifecycleEvent, List[LifecycleHandler]] = {
            event: [] for event in LifecycleEvent
        }

        self.state = LifecycleState.IDLE
        self.registered: Set[str] = set()
        self.exit_graceful: Optional[bool] = None

        self._setup = False
        self._running = False
        self._stopping = False
        self._stop_attempts = 0
        self._stop_timeout: Optional[float] = None

        self._deadline: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_handler = None
        self._handler_installed = False

    # -- status --------------------------------------------------------------

    @property
    def status(self) -> LifecycleStatus:
        return LifecycleStatus(
            setup=self._setup,
            running=self._running,
            stopping=self._stopping,
            stop_attempts=self._stop_attempts,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def stop_attempts(self) -> int:
        return self._stop_attempts

    @property
    def exiting(self) -> bool:
        return self.state == LifecycleState.EXITING

    # -- notifications -------------------------------------------------------

    def subscribe(self, event: LifecycleEvent, handler: LifecycleHandler) -> None:
        self._subscribers[LifecycleEvent(event)].append(handler)

    def unsubscribe(self, event: LifecycleEvent, handler: LifecycleHandler) -> None:
        handlers = self._subscribers[LifecycleEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: LifecycleEvent, **payload: Any) -> None:
        for handler in list(self._subscribers[event]):
            try:
                handler(event, payload)
            except Exception as e:
                self.logger.error(
                    f"Lifecycle subscriber failed on {event.value}",
                    extra={"error": str(e)},
                    exc_info=True
                )

    # -- transitions ---------------------------------------------------------

    def mark_setup(self) -> None:
        """
        IDLE -> SETUP.

        Raises:
            AlreadySetupError: If setup already ran
        """
        if self._setup:
            raise AlreadySetupError(name=self.name)
        self._setup = True
        self.state = LifecycleState.SETUP
        self._emit(LifecycleEvent.SETUP)

    def ready(self) -> None:
        """Mark the application as running and start observing fatal errors."""
        if self.exiting:
            return

        self._running = True
        self.state = LifecycleState.RUNNING

        if self.config.catch_exceptions and not self._handler_installed:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
                self.logger.debug("No running loop, loop exception handler not installed")
            if loop is not None:
                self._loop = loop
                self._previous_handler = loop.get_exception_handler()
                loop.set_exception_handler(self._loop_exception_handler)
                self._handler_installed = True

        self.logger.info(f"{self.name} is ready")
        self._emit(LifecycleEvent.READY)

    def register(self, id: str) -> bool:
        """
        Add a live subsystem. Returns False if *id* was already registered.
        """
        if not isinstance(id, str):
            raise TypeError(f"Registry ids must be str, got {type(id).__name__}")
        if id in self.registered:
            return False

        self.registered.add(id)
        self.logger.info(f"Registered: {id}", extra={"registered": len(self.registered)})
        self._emit(LifecycleEvent.REGISTERED, id=id)
        return True

    def deregister(self, id: str) -> bool:
        """
        Remove a subsystem. The last removal while not running exits gracefully.

        Returns False if *id* was not registered.
        """
        if id not in self.registered:
            return False

        self.registered.discard(id)
        self.logger.warning(f"De-registered: {id}", extra={"registered": len(self.registered)})
        self._emit(LifecycleEvent.DEREGISTERED, id=id)

        if not self.registered and not self._running:
            self.exit(graceful=True)
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Request shutdown.

        First call: running=False, stopping=True, CLOSE emitted; exits
        gracefully right away if nothing is registered. Later calls
        escalate towards a forced exit.

        Args:
            timeout: Deadline in seconds for the graceful close once
                escalation starts. Defaults to config.stop_timeout.
        """
        if self.exiting:
            return
        if timeout is not None:
            self._stop_timeout = timeout

        if self._stopping:
            self._stop_attempts += 1
            max_attempts = self.config.stop_attempts

            if self._stop_attempts >= max_attempts:
                self.logger.error(f"Forcefully killing {self.name}")
                self.exit(graceful=False)
                return

            if self._stop_attempts == 1:
                self._arm_deadline()

            self.logger.warning(
                f"{self.name} already stopping. Attempt {max_attempts - self._stop_attempts} "
                f"more times to kill process",
                extra={"stop_attempts": self._stop_attempts}
            )
            return

        self._running = False
        self._stopping = True
        self.state = LifecycleState.STOPPING
        self.logger.info(f"Stopping {self.name} gracefully", extra={"registered": sorted(self.registered)})
        self._emit(LifecycleEvent.CLOSE)

        if not self.registered:
            self.exit(graceful=True)

    def exit(self, graceful: bool = False) -> None:
        """Terminal transition. Calls exit_fn(0) when graceful, exit_fn(1) otherwise."""
        if self.exiting:
            return

        self.state = LifecycleState.EXITING
        self.exit_graceful = graceful
        self._running = False

        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        self._restore_exception_handler()

        if graceful:
            self.logger.info(f"{self.name} gracefully closed")
        else:
            self.logger.error(f"{self.name} exiting without graceful close",
                              extra={"registered": sorted(self.registered)})

        self._emit(LifecycleEvent.EXIT, graceful=graceful)
        self._exit_fn(0 if graceful else 1)

    def report_fatal(self, exc: BaseException) -> None:
        """Record an unhandled error. Outside the running state it also requests stop()."""
        self.logger.error(
            f"Unhandled error: {exc}",
            extra={"error_type": type(exc).__name__},
            exc_info=(type(exc), exc, exc.__traceback__)
        )
        if not self._running:
            self.stop()

    # -- internals -----------------------------------------------------------

    def _arm_deadline(self) -> None:
        timeout = self._stop_timeout if self._stop_timeout is not None else self.config.stop_timeout
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running loop, shutdown deadline not armed")
            return

        self.logger.warning(
            f"{self.name} will be closed in {timeout}s if it does not shut down gracefully"
        )
        self._deadline = loop.call_later(timeout, self._on_deadline, timeout)

    def _on_deadline(self, timeout: float) -> None:
        self._deadline = None
        self.logger.error(f"{self.name} took longer than {timeout}s to close. Killing process.")
        self.exit(graceful=False)

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = RuntimeError(context.get("message", "unhandled loop error"))
        self.report_fatal(exc)

    def _restore_exception_handler(self) -> None:
        if self._handler_installed and self._loop is not None:
            self._loop.set_exception_handler(self._previous_handler)
        self._handler_installed = False
        self._loop = None
        self._previous_handler = None
