"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Asynchronous memoizing cache with request coalescing and bounded concurrency.

``AsyncMRUCache`` guarantees that only one fetch per key is in flight at a
time: later requests for the same key subscribe to the first request's
channel. An empty image cache that receives two concurrent requests for
``foo.jpg`` issues one download, while a request for ``bar.jpg`` does not wait
on ``foo.jpg``. Fetches across all keys are additionally limited to
``max_concurrent``; the rest queue in FIFO order.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from typing import Any, Generic, TypeVar

from .admission import AdmissionQueue, AdmissionTicket
from .channel import BroadcastChannel
from .memoizing import MemoizingMRUCache
from .metrics import (
    EVICTIONS,
    FETCH_COMPLETED,
    FETCH_FAILED,
    FETCH_STARTED,
    HITS,
    MISSES,
    CacheMetrics,
    NoOpCacheMetrics,
)
from .scheduling import BackgroundLoopScheduler, Scheduler, create_scheduler
from .settings import CacheSettings

logger = logging.getLogger("mrucache.coordinator")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

FetchFn = Callable[[K], "Awaitable[V] | AsyncIterator[V] | V"]
ReleaseFn = Callable[[V], Any]


class AsyncMRUCache(Generic[K, V]):
    """
    Memoize an asynchronous ``fetch(key)`` for the most recently used keys.

    ``fetch`` may return an awaitable (one value), an async iterator (zero or
    more values) or a plain value. Like any memoized function it must map a
    key to an equivalent result every time.

    A failed fetch stays cached: later requests for that key replay the same
    error until ``invalidate(key)`` is called. Nothing is retried
    automatically.

    Evicting or invalidating a key whose fetch is still running detaches it
    from the cache. The fetch keeps its admission slot and runs to the end;
    callers already holding its channel still receive the result.
    """

    def __init__(
        self,
        fetch: FetchFn[K, V],
        max_size: int,
        max_concurrent: int = 5,
        on_release: ReleaseFn[V] | None = None,
        scheduler: Scheduler | None = None,
        *,
        metrics: CacheMetrics | None = None,
        check_invariants: bool = False,
    ) -> None:
        """
        Args:
            fetch: The expensive or asynchronous computation to memoize.
            max_size: Number of keys to keep; least recently used keys are
                dropped beyond it.
            max_concurrent: Maximum fetches in flight regardless of key. This
                matters for web-backed caches that must not flood a server.
            on_release: Called with each value of a channel that leaves the
                cache. A pending channel calls it once its value arrives; a
                failed channel never does. Useful to delete a file that
                ``fetch`` downloaded into a temporary folder.
            scheduler: Where fetches run. Defaults to a private background
                event loop owned (and closed) by this cache.
            metrics: Counter sink; no-op by default.
            check_invariants: Verify cache and admission invariants after
                every mutation.
        """
        self._fetch = fetch
        self._on_release = on_release
        self._metrics: CacheMetrics = metrics or NoOpCacheMetrics()
        self._check_invariants = check_invariants
        self._admission = AdmissionQueue(max_concurrent)
        self._cache: MemoizingMRUCache[K, BroadcastChannel[V]] = MemoizingMRUCache(
            _unreachable_calc,
            max_size,
            on_release=self._release_channel,
        )
        self._lock = threading.Lock()
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler or BackgroundLoopScheduler()
        self._in_flight = 0
        # Channels that left the cache under the lock, released after it.
        self._evicted: list[BroadcastChannel[V]] = []

    @classmethod
    def from_settings(
        cls,
        fetch: FetchFn[K, V],
        settings: CacheSettings | None = None,
        *,
        on_release: ReleaseFn[V] | None = None,
        scheduler: Scheduler | None = None,
        metrics: CacheMetrics | None = None,
    ) -> "AsyncMRUCache[K, V]":
        """Build a cache from explicit settings, or from the environment."""
        settings = (settings or CacheSettings.from_env()).validate()
        owns_scheduler = scheduler is None
        resolved = scheduler or create_scheduler(settings.scheduler)
        cache = cls(
            fetch,
            settings.max_size,
            settings.max_concurrent,
            on_release=on_release,
            scheduler=resolved,
            metrics=metrics,
            check_invariants=settings.check_invariants,
        )
        cache._owns_scheduler = owns_scheduler
        return cache

    @property
    def max_size(self) -> int:
        return self._cache.max_size

    @property
    def max_concurrent(self) -> int:
        return self._admission.max_concurrent

    @property
    def admission(self) -> AdmissionQueue:
        return self._admission

    @property
    def in_flight(self) -> int:
        """Number of fetches that were dispatched and have not finished."""
        with self._lock:
            return self._in_flight

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __enter__(self) -> "AsyncMRUCache[K, V]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop the scheduler if this cache created it."""
        if self._owns_scheduler:
            self._scheduler.close()

    def async_get(self, key: K) -> BroadcastChannel[V]:
        """
        Request the value for ``key`` without blocking.

        The returned channel fires once the fetch finishes, or immediately if
        the result is already cached. ``await`` it for the first value, or
        ``async for`` over it for every value.
        """
        with self._lock:
            channel, found = self._cache.try_get(key)
            if found and channel is not None:
                logger.debug("Cache hit: %r", key)
                self._metrics.incr(HITS)
                return channel

            logger.debug("Cache miss: %r", key)
            self._metrics.incr(MISSES)
            channel = BroadcastChannel(key)
            # Published before the fetch starts, so racing callers see the
            # pending channel instead of a fresh miss.
            self._cache.put(key, channel)
            self._verify_locked()

        self._flush_evicted()
        self._admission.submit(
            lambda ticket: self._dispatch(key, channel, ticket)
        )
        self._verify()
        return channel

    def get(self, key: K, timeout: float | None = None) -> V:
        """
        Blocking version of ``async_get``: wait for and return the first value.

        Raises the fetch error if it failed, ``EmptyResultError`` if it
        finished without a value and ``TimeoutError`` after ``timeout``.
        """
        if self._scheduler.owns_current_thread():
            raise RuntimeError(
                "AsyncMRUCache.get() would deadlock on the scheduler thread; "
                "await async_get() instead"
            )
        return self.async_get(key).first(timeout)

    def try_get(self, key: K) -> tuple[BroadcastChannel[V] | None, bool]:
        """Return the cached channel for ``key`` without starting a fetch."""
        with self._lock:
            return self._cache.try_get(key)

    def invalidate(self, key: K) -> None:
        """Forget ``key`` so the next request fetches it again."""
        with self._lock:
            self._cache.invalidate(key)
        self._flush_evicted()

    def invalidate_all(self) -> None:
        with self._lock:
            self._cache.invalidate_all()
        self._flush_evicted()

    def cached_values(self) -> list[BroadcastChannel[V]]:
        """Snapshot of cached channels, pending ones included."""
        with self._lock:
            return self._cache.cached_values()

    def _dispatch(
        self, key: K, channel: BroadcastChannel[V], ticket: AdmissionTicket
    ) -> None:
        logger.debug("Dispatching %r (ticket %d)", key, ticket.sequence)
        try:
            self._scheduler.submit(self._run_fetch(key, channel, ticket))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Could not schedule fetch for %r", key)
            channel.fail(exc)
            ticket.release()

    async def _run_fetch(
        self, key: K, channel: BroadcastChannel[V], ticket: AdmissionTicket
    ) -> None:
        with self._lock:
            self._in_flight += 1
        self._metrics.incr(FETCH_STARTED)
        try:
            produced = self._fetch(key)
            if inspect.isawaitable(produced):
                channel.publish(await produced)
            elif hasattr(produced, "__aiter__"):
                async for value in produced:
                    channel.publish(value)
            else:
                channel.publish(produced)
        except BaseException as exc:
            # Cancellation on scheduler shutdown is broadcast too.
            logger.debug("Fetch for %r failed: %r", key, exc)
            self._metrics.incr(FETCH_FAILED)
            channel.fail(exc)
            if not isinstance(exc, Exception):
                raise
        else:
            self._metrics.incr(FETCH_COMPLETED)
            channel.complete()
        finally:
            with self._lock:
                self._in_flight -= 1
            ticket.release()
            self._verify()

    def _release_channel(self, channel: BroadcastChannel[V]) -> None:
        self._metrics.incr(EVICTIONS)
        if self._on_release is not None:
            self._evicted.append(channel)

    def _flush_evicted(self) -> None:
        with self._lock:
            evicted, self._evicted = self._evicted, []
        for channel in evicted:
            logger.debug("Releasing channel for %r", channel.key)
            # Values reach on_release as they arrive; errors are not released.
            channel.subscribe(self._on_release, on_error=_ignore_error)

    def _verify(self) -> None:
        if not self._check_invariants:
            return
        with self._lock:
            self._verify_locked()

    def _verify_locked(self) -> None:
        if not self._check_invariants:
            return
        self._cache.assert_consistent()
        self._admission.assert_consistent()


def _unreachable_calc(key: Any, context: Any) -> Any:
    # Entries are only ever stored through put().
    raise LookupError(f"no cached channel for key {key!r}")


def _ignore_error(error: BaseException) -> None:
    _ = error
