"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Stream helpers built on ``AsyncMRUCache``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Hashable, Iterable
from typing import Any, TypeVar

from .channel import BroadcastChannel
from .coordinator import AsyncMRUCache, FetchFn
from .scheduling import EventLoopScheduler, Scheduler

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


async def cached_map(
    source: Iterable[K] | AsyncIterable[K],
    fetch: FetchFn[K, V] | AsyncMRUCache[K, V],
    *,
    max_cached: int = 50,
    max_concurrent: int = 5,
    scheduler: Scheduler | None = None,
) -> AsyncIterator[V]:
    """
    Map every item of ``source`` through a memoized, throttled fetch.

    Values are yielded as fetches finish, so output order follows completion
    rather than input order; a fetch producing several values contributes all
    of them. Repeated items are served from the cache, and at most
    ``max_concurrent`` fetches run at once.

    Pass an existing ``AsyncMRUCache`` as ``fetch`` to share one cache between
    several call sites. Otherwise a cache is created on the running loop (or
    ``scheduler``) and closed when the generator finishes.

    The first fetch error stops the generator and is raised to the consumer.
    """
    if isinstance(fetch, AsyncMRUCache):
        cache, owned = fetch, False
    else:
        cache = AsyncMRUCache(
            fetch,
            max_cached,
            max_concurrent,
            scheduler=scheduler or EventLoopScheduler.current(),
        )
        owned = True

    inbox: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
    pumps: set[asyncio.Task[None]] = set()

    async def _pump(channel: BroadcastChannel[V]) -> None:
        try:
            async for value in channel:
                await inbox.put(("value", value))
        except Exception as exc:  # noqa: BLE001
            await inbox.put(("error", exc))
        await inbox.put(("done", None))

    async def _feed() -> None:
        count = 0
        try:
            async for item in _iterate(source):
                pumps.add(asyncio.create_task(_pump(cache.async_get(item))))
                count += 1
        except Exception as exc:  # noqa: BLE001
            await inbox.put(("error", exc))
            return
        await inbox.put(("fed", count))

    feeder = asyncio.create_task(_feed())
    expected: int | None = None
    finished = 0
    try:
        while expected is None or finished < expected:
            kind, payload = await inbox.get()
            if kind == "value":
                yield payload
            elif kind == "error":
                raise payload
            elif kind == "done":
                finished += 1
            else:
                expected = payload
        await feeder
    finally:
        for task in (feeder, *pumps):
            task.cancel()
        await asyncio.gather(feeder, *pumps, return_exceptions=True)
        if owned:
            cache.close()


async def _iterate(source: Iterable[K] | AsyncIterable[K]) -> AsyncIterator[K]:
    if isinstance(source, AsyncIterable):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item
