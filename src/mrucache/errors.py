"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error types raised by the memoizing cache and its coordinator.

Errors raised by user computations (``calc``/``fetch``) are never wrapped;
they reach callers as the original exception object.
"""

from __future__ import annotations


class MRUCacheError(RuntimeError):
    """Base class for errors raised by the mrucache package."""


class CapacityError(MRUCacheError, ValueError):
    """Raised when a cache or admission queue is built with invalid bounds."""


class ConsistencyError(MRUCacheError):
    """Raised when an internal invariant no longer holds."""


class EmptyResultError(MRUCacheError, LookupError):
    """Raised when a result is requested from a channel that produced no value."""


class ChannelClosedError(MRUCacheError):
    """Raised when publishing to a channel that already reached a terminal state."""
