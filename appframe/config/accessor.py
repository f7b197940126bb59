"""
Dotted-path access to configuration values, plus rotation helpers.

    accessor = ConfigAccessor(app_config, codes)
    accessor.get("db.hosts")                # ["db1", "db2"]
    accessor.get_round_robin("db.hosts")    # one RotationPool per path
    accessor.get_and_lock("db.hosts", cb)   # one LockedRotationQueue per path

Rotation state is cached per path on first use; later config changes at
that path do not rebuild the pool/queue.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel

from appframe.codes.errors import NotCollectionError
from appframe.selection import LockedRotationQueue, RotationPool

if TYPE_CHECKING:
    from appframe.codes.registry import CodeRegistry

_MISSING = object()


class ConfigAccessor:
    """Read-only view over an AppConfig (or plain dict) with per-path rotation helpers."""

    def __init__(self, source: Any, codes: Optional["CodeRegistry"] = None,
                 rng: Optional[random.Random] = None):
        self._source = source
        self._codes = codes
        self._rng = rng or random.Random()
        self._pools: Dict[str, RotationPool] = {}
        self._queues: Dict[str, LockedRotationQueue] = {}

    def _data(self) -> Any:
        if isinstance(self._source, BaseModel):
            return self._source.model_dump()
        return self._source

    def _resolve(self, path: str) -> Any:
        node = self._data()
        for part in path.split("."):
            if isinstance(node, Mapping):
                if part not in node:
                    return _MISSING
                node = node[part]
            elif isinstance(node, Sequence) and not isinstance(node, str) and part.isdigit():
                idx = int(part)
                if idx >= len(node):
                    return _MISSING
                node = node[idx]
            else:
                return _MISSING
        return node

    def get(self, path: str, default: Any = None) -> Any:
        value = self._resolve(path)
        return default if value is _MISSING else value

    def has(self, path: str) -> bool:
        return self._resolve(path) is not _MISSING

    def get_random(self, path: str) -> Any:
        """
        Uniform random element of the list (or mapping values) at *path*.

        Raises:
            NotCollectionError: If *path* does not hold a non-empty list or mapping
        """
        value = self._resolve(path)
        if isinstance(value, Mapping):
            value = list(value.values())
        if not isinstance(value, Sequence) or isinstance(value, (str, bytes)) or not value:
            self._raise_not_collection(path, value)
        return self._rng.choice(value)

    def get_round_robin(self, path: str) -> Any:
        """Next item of the RotationPool built for *path*."""
        pool = self._pools.get(path)
        if pool is None:
            pool = RotationPool(self._collection(path), rng=self._rng, codes=self._codes)
            self._pools[path] = pool
        return pool.next()

    def get_and_lock(self, path: str, callback, timeout: Optional[float] = None):
        """Queue a lock request on the LockedRotationQueue built for *path*."""
        queue = self._queues.get(path)
        if queue is None:
            queue = LockedRotationQueue(self._collection(path), rng=self._rng, codes=self._codes)
            self._queues[path] = queue
        return queue.next(callback, timeout)

    def _collection(self, path: str) -> Any:
        value = self._resolve(path)
        if value is _MISSING:
            self._raise_not_collection(path, value)
        return value

    def _raise_not_collection(self, path: str, value: Any):
        data = {"path": path, "value_type": "missing" if value is _MISSING else type(value).__name__}
        if self._codes is not None:
            raise self._codes.make(NotCollectionError, data)
        raise NotCollectionError(**data)
