"""
Fair rotation over a fixed collection.

INVARIANT:
    next() never returns the same index twice within one cycle. A cycle
    ends the moment the last unused index is handed out (or on clear()).

DESIGN:
    - Selection is uniform random among unused indices, not cyclic order.
      Callers depend on even coverage, not on a fixed sequence.
    - used is exposed only for inspection; tampering with it so that no
      index remains available raises CorruptedStateError.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Generic, Optional, Set, Tuple, TypeVar

from appframe.codes.errors import ConstructionError, CorruptedStateError

if TYPE_CHECKING:
    from appframe.codes.registry import CodeRegistry

T = TypeVar("T")


def validate_items(items: Any, codes: Optional["CodeRegistry"] = None) -> Tuple[Any, ...]:
    """
    Return *items* as a tuple, or raise ConstructionError.

    Accepts any ordered sequence except strings/bytes; mappings and
    scalars are rejected. When a CodeRegistry is given the error is built
    through it so the occurrence reaches the error monitor.
    """
    valid = (
        isinstance(items, Sequence)
        and not isinstance(items, (str, bytes, bytearray, Mapping))
        and len(items) > 0
    )
    if not valid:
        data = {"items_type": type(items).__name__}
        if codes is not None:
            raise codes.make(ConstructionError, data)
        raise ConstructionError(**data)
    return tuple(items)


class RotationPool(Generic[T]):
    """
    Returns items so no single item is handed out more than its siblings.

    Usage:
        pool = RotationPool(["db1", "db2", "db3"])
        host = pool.next()
    """

    def __init__(self, items: Sequence[T], *, rng: Optional[random.Random] = None,
                 codes: Optional["CodeRegistry"] = None):
        self._items: Tuple[T, ...] = validate_items(items, codes)
        self._indices: Set[int] = set(range(len(self._items)))
        self._rng = rng or random.Random()
        self.used: Set[int] = set()

    @property
    def items(self) -> Tuple[T, ...]:
        return self._items

    @property
    def remaining(self) -> int:
        """Items left before the current cycle ends."""
        return len(self._indices - self.used)

    def __len__(self) -> int:
        return len(self._items)

    def next(self) -> T:
        """
        Randomly pick an item not yet returned in this cycle.

        Raises:
            CorruptedStateError: If used covers every index without having
                been cleared
        """
        available = sorted(self._indices - self.used)
        if not available:
            raise CorruptedStateError(used=sorted(self.used), size=len(self._items))

        index = self._rng.choice(available)
        self.used.add(index)
        if self._indices <= self.used:
            self.used.clear()
        return self._items[index]

    def clear(self) -> "RotationPool[T]":
        """Start a new cycle."""
        self.used.clear()
        return self
