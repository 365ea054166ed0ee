"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Capacity-bounded memoizing cache with least-recently-used eviction.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Any, Generic, TypeVar

from .errors import CapacityError, ConsistencyError

logger = logging.getLogger("mrucache.memoizing")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

CalcFn = Callable[[K, Any], V]
ReleaseFn = Callable[[V], Any]


class MemoizingMRUCache(Generic[K, V]):
    """
    Memoize ``calc(key, context)`` for the most recently used keys.

    ``calc`` must be a function in the mathematical sense: a key always maps
    to an equivalent value, because results are shared by every later caller
    of that key.

    The cache is not synchronized. Owners that share it across threads must
    guard every call with their own lock.
    """

    def __init__(
        self,
        calc: CalcFn[K, V],
        max_size: int,
        on_release: ReleaseFn[V] | None = None,
    ) -> None:
        """
        Args:
            calc: Function producing the value for a key on a miss.
            max_size: Number of entries to keep; must be > 0.
            on_release: Called once with each value leaving the cache, whether
                by eviction or invalidation.
        """
        if max_size <= 0:
            raise CapacityError(f"max_size must be > 0, got {max_size}")
        self._calc = calc
        self._max_size = max_size
        self._on_release = on_release
        # Least recently used first, most recently used last.
        self._entries: OrderedDict[K, V] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: K, context: Any = None) -> V:
        """Return the cached value for ``key``, computing it on a miss."""
        if key in self._entries:
            logger.debug("Cache hit: %r", key)
            self._entries.move_to_end(key)
            return self._entries[key]

        logger.debug("Cache miss: %r", key)
        value = self._calc(key, context)
        self._entries[key] = value
        self._maintain()
        return value

    def try_get(self, key: K) -> tuple[V | None, bool]:
        """Look up ``key`` without computing; a hit still counts as a use."""
        if key not in self._entries:
            return None, False
        self._entries.move_to_end(key)
        return self._entries[key], True

    def put(self, key: K, value: V) -> None:
        """Store a precomputed value as the most recently used entry."""
        if key in self._entries:
            previous = self._entries.pop(key)
            if previous is not value:
                self._release(key, previous)
        self._entries[key] = value
        self._maintain()

    def invalidate(self, key: K) -> None:
        """Drop ``key`` so the next ``get`` computes it again."""
        if key not in self._entries:
            return
        value = self._entries.pop(key)
        logger.debug("Invalidating %r", key)
        self._release(key, value)

    def invalidate_all(self) -> None:
        """Drop every entry, releasing each value once."""
        if self._on_release is None:
            self._entries.clear()
            return
        for key in list(self._entries.keys()):
            self.invalidate(key)

    def cached_values(self) -> list[V]:
        """Snapshot of cached values, least recently used first."""
        return list(self._entries.values())

    def keys(self) -> list[K]:
        """Snapshot of cached keys, least recently used first."""
        return list(self._entries.keys())

    def assert_consistent(self) -> None:
        """Raise ``ConsistencyError`` when the capacity bound does not hold."""
        if len(self._entries) > self._max_size:
            raise ConsistencyError(
                f"cache holds {len(self._entries)} entries, max_size={self._max_size}"
            )

    def _maintain(self) -> None:
        while len(self._entries) > self._max_size:
            key, value = self._entries.popitem(last=False)
            logger.debug("Evicting %r", key)
            self._release(key, value)

    def _release(self, key: K, value: V) -> None:
        if self._on_release is None:
            return
        try:
            self._on_release(value)
        except Exception:  # noqa: BLE001
            logger.exception("on_release callback failed for key %r", key)
