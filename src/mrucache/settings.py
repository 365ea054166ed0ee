"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Cache settings and explicit environment loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import CapacityError

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_str(name: str, default: str) -> str:
    value = (os.getenv(name) or "").strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    """Read an integer bound; unset or blank falls back to ``default``."""
    raw = _env_str(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str) -> bool:
    return _env_str(name, "").lower() in _TRUE_VALUES


@dataclass(frozen=True, slots=True)
class CacheSettings:
    """
    Explicit settings used to build an ``AsyncMRUCache``.

    Attributes:
        max_size: Number of keys kept in the cache.
        max_concurrent: Maximum fetches running at once, across all keys.
        scheduler: Execution context name for fetches (``background`` or ``loop``).
        check_invariants: Verify cache and admission invariants after each
            mutation; intended for tests and debugging.
    """

    max_size: int = 50
    max_concurrent: int = 5
    scheduler: str = "background"
    check_invariants: bool = False

    def validate(self) -> "CacheSettings":
        """Fail fast on bounds the cache cannot honor."""
        if self.max_size <= 0:
            raise CapacityError(f"max_size must be > 0, got {self.max_size}")
        if self.max_concurrent < 1:
            raise CapacityError(
                f"max_concurrent must be >= 1, got {self.max_concurrent}"
            )
        return self

    @staticmethod
    def from_env() -> "CacheSettings":
        """Load settings from `MRUCACHE_*` environment variables."""
        return CacheSettings(
            max_size=_env_int("MRUCACHE_MAX_SIZE", 50),
            max_concurrent=_env_int("MRUCACHE_MAX_CONCURRENT", 5),
            scheduler=_env_str("MRUCACHE_SCHEDULER", "background").lower(),
            check_invariants=_env_bool("MRUCACHE_CHECK_INVARIANTS"),
        ).validate()
