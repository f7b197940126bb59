"""
Application facade: wires config, codes, monitor and lifecycle together.

ARCHITECTURE:
- One CodeRegistry per application; the ErrorThresholdMonitor listens on it
- One LifecycleRegistry drives shutdown
- Rotation helpers are built with the application's codes so their
  errors and timeouts are seen by the monitor
- Startup jobs run in order; the first failure exits forced

Usage:
    app = Application(load_config(Path("config")))

    async def connect_db(app):
        app.register("db")

    await app.start([connect_db])
"""

from __future__ import annotations

import inspect
import random as _random
import secrets
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from appframe.codes import AlreadySetupError, CodeKind, CodeRegistry
from appframe.config import AppConfig, ConfigAccessor, load_config
from appframe.logging import get_logger, LogStream, set_correlation_id, set_debug, setup_logging
from appframe.monitoring import ErrorThresholdMonitor
from appframe.selection import LockedRotationQueue, RotationPool
from appframe.time import Clock

from .lifecycle import ExitFn, LifecycleEvent, LifecycleRegistry, LifecycleStatus

logger = get_logger(LogStream.SYSTEM)

StartupJob = Callable[["Application"], Any]


class Application:
    """Runtime coordination for one process."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        clock: Optional[Clock] = None,
        exit_fn: Optional[ExitFn] = None,
        rng: Optional[_random.Random] = None,
        configure_logging: bool = False,
    ):
        self.config = config or AppConfig()
        self._rng = rng or _random.Random()
        self._configure_logging = configure_logging

        self.codes = CodeRegistry()
        self.monitor = ErrorThresholdMonitor(clock=clock).attach(self.codes)
        self.lifecycle = LifecycleRegistry(
            self.config.lifecycle,
            exit_fn=exit_fn,
            name=self.config.name,
        )
        self.settings = ConfigAccessor(self.config, self.codes, self._rng)
        self.run_id: Optional[str] = None

    @classmethod
    def from_config_dir(cls, config_dir: Path = Path("config"), **kwargs) -> "Application":
        return cls(load_config(config_dir), **kwargs)

    # -- startup -------------------------------------------------------------

    def setup(self) -> "Application":
        """
        One-time initialization.

        Raises:
            AlreadySetupError: On a second call
        """
        if self.lifecycle.status.setup:
            raise self.codes.make(AlreadySetupError, {"name": self.config.name})

        if self._configure_logging:
            log_cfg = self.config.logging
            setup_logging(
                log_dir=log_cfg.log_dir,
                log_level=log_cfg.level.value,
                console_level=log_cfg.console_level.value,
                json_logs=log_cfg.json_logs,
                max_bytes=log_cfg.max_bytes,
                backup_count=log_cfg.backup_count,
            )
            set_debug(self.config.debug)

        self.run_id = set_correlation_id()
        self.lifecycle.mark_setup()
        self.codes.register_codes(self.config.codes)
        if self.config.track_errors:
            self.monitor.enable()

        logger.info(
            f"{self.config.name} setup complete",
            extra={"version": self.config.version, "run_id": self.run_id,
                   "track_errors": self.config.track_errors}
        )
        return self

    async def start(self, jobs: Iterable[StartupJob] = ()) -> "Application":
        """
        setup(), run startup jobs in order, then ready().

        Jobs are called with the application and may be sync or async.
        The first failing job forces an exit and its exception is re-raised.
        """
        self.setup()

        for job in jobs:
            job_name = getattr(job, "__name__", repr(job))
            try:
                result = job(self)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Failed to start up",
                    extra={"job": job_name, "error": str(e)},
                    exc_info=True
                )
                self.codes.error_code("app.startup_failed", {"job": job_name, "error": str(e)})
                self.lifecycle.exit(graceful=False)
                raise

        logger.info(f"{self.config.name} is ready")
        self.lifecycle.ready()
        return self

    # -- lifecycle pass-throughs --------------------------------------------

    @property
    def status(self) -> LifecycleStatus:
        return self.lifecycle.status

    def register(self, id: str) -> bool:
        return self.lifecycle.register(id)

    def deregister(self, id: str) -> bool:
        return self.lifecycle.deregister(id)

    def ready(self) -> None:
        self.lifecycle.ready()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.lifecycle.stop(timeout)

    def on(self, event: LifecycleEvent, handler) -> None:
        self.lifecycle.subscribe(event, handler)

    # -- codes / limits ------------------------------------------------------

    def error_code(self, code: str, data=None):
        return self.codes.error_code(code, data)

    def fail_code(self, code: str, data=None):
        return self.codes.fail_code(code, data)

    def register_limit(
        self,
        code: str,
        threshold: int,
        callback,
        *,
        kind=CodeKind.ERROR_CODE,
        decay: Optional[float] = None,
        reset: int = 1,
    ):
        return self.monitor.register_limit(
            code, threshold, callback, kind=kind, decay=decay, reset=reset
        )

    # -- utilities -----------------------------------------------------------

    def round_robin(self, items: Sequence[Any]) -> RotationPool:
        return RotationPool(items, rng=self._rng, codes=self.codes)

    def get_and_lock(self, items: Sequence[Any]) -> LockedRotationQueue:
        """Queue over *items* whose timeouts are emitted as failCode occurrences."""
        return LockedRotationQueue(items, rng=self._rng, codes=self.codes)

    def sample(self, items: Any) -> Any:
        """Random element of a list, or of a mapping's values. None when empty."""
        if isinstance(items, Mapping):
            items = list(items.values())
        if not items:
            return None
        return self._rng.choice(list(items))

    @staticmethod
    def random(length: int = 16) -> str:
        """URL-safe random string of exactly *length* characters."""
        if length < 1:
            raise ValueError(f"length must be >= 1, got {length}")
        return secrets.token_urlsafe(length)[:length]

    def toggle_debug(self) -> bool:
        """Flip console debug output. Returns the new setting."""
        self.config.debug = not self.config.debug
        set_debug(self.config.debug)
        logger.info(f"Debug {'enabled' if self.config.debug else 'disabled'}")
        return self.config.debug
