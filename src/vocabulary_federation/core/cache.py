"""
Bounded FIFO cache used for per-adapter result caches.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")

DEFAULT_CAPACITY = 20


class BoundedCache(Generic[K, V]):
    """
    Insertion-ordered cache that never holds more than ``capacity`` entries.

    Keys are compared with ``==`` rather than hashed so that request parameter
    mappings and JSKOS objects can be used directly as keys. Inserting beyond
    capacity evicts the oldest entry first; re-inserting an existing key
    replaces it and moves it to the newest position.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("BoundedCache capacity must be at least 1.")
        self.capacity = capacity
        self._entries: List[Tuple[K, V]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return (key for key, _ in self._entries)

    def __contains__(self, key: object) -> bool:
        return self._index(key) is not None

    def _index(self, key: object) -> Optional[int]:
        for position, (existing, _) in enumerate(self._entries):
            if existing == key:
                return position
        return None

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        position = self._index(key)
        if position is None:
            return default
        return self._entries[position][1]

    def find(self, predicate: Callable[[K], bool]) -> Optional[V]:
        """Return the value of the first entry whose key satisfies ``predicate``."""

        for key, value in self._entries:
            if predicate(key):
                return value
        return None

    def put(self, key: K, value: V) -> None:
        position = self._index(key)
        if position is not None:
            del self._entries[position]
        self._entries.append((key, value))
        overflow = len(self._entries) - self.capacity
        if overflow > 0:
            del self._entries[:overflow]

    def items(self) -> List[Tuple[K, Any]]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
