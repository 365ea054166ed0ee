"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Memoizing MRU caches with request coalescing and bounded concurrency.

Quick start::

    from mrucache import AsyncMRUCache

    async def download(url: str) -> bytes:
        ...

    with AsyncMRUCache(download, max_size=100, max_concurrent=4) as images:
        data = images.get("https://example.com/foo.jpg")
        # or, from a coroutine:
        data = await images.async_get("https://example.com/foo.jpg")
"""

from .admission import AdmissionQueue, AdmissionTicket, TicketState
from .channel import BroadcastChannel, ChannelState, Subscription
from .coordinator import AsyncMRUCache
from .errors import (
    CapacityError,
    ChannelClosedError,
    ConsistencyError,
    EmptyResultError,
    MRUCacheError,
)
from .memoizing import MemoizingMRUCache
from .metrics import CacheMetrics, NoOpCacheMetrics, PrometheusCacheMetrics
from .operators import cached_map
from .scheduling import (
    BackgroundLoopScheduler,
    EventLoopScheduler,
    Scheduler,
    create_scheduler,
)
from .settings import CacheSettings

__all__ = [
    "MemoizingMRUCache",
    "AdmissionQueue",
    "AdmissionTicket",
    "TicketState",
    "BroadcastChannel",
    "ChannelState",
    "Subscription",
    "AsyncMRUCache",
    "cached_map",
    "Scheduler",
    "BackgroundLoopScheduler",
    "EventLoopScheduler",
    "create_scheduler",
    "CacheSettings",
    "CacheMetrics",
    "NoOpCacheMetrics",
    "PrometheusCacheMetrics",
    "MRUCacheError",
    "CapacityError",
    "ConsistencyError",
    "EmptyResultError",
    "ChannelClosedError",
]
