"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Metrics adapters for cache and fetch observability.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

HITS = "mrucache_hits_total"
MISSES = "mrucache_misses_total"
EVICTIONS = "mrucache_evictions_total"
FETCH_STARTED = "mrucache_fetch_started_total"
FETCH_COMPLETED = "mrucache_fetch_completed_total"
FETCH_FAILED = "mrucache_fetch_failed_total"


class CacheMetrics(Protocol):
    """Minimal metrics interface for cache instrumentation."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""


class NoOpCacheMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags


_DOCUMENTATION = {
    HITS: "Requests answered by a cached channel, pending or finished.",
    MISSES: "Requests that started a new fetch.",
    EVICTIONS: "Channels dropped by eviction or invalidation.",
    FETCH_STARTED: "Fetches that obtained an admission slot and began running.",
    FETCH_COMPLETED: "Fetches that finished without an error.",
    FETCH_FAILED: "Fetches that raised or were cancelled.",
}


class PrometheusCacheMetrics:
    """
    Predeclared Prometheus counters for ``AsyncMRUCache``.

    All six ``mrucache_*_total`` counters are registered up front with a
    ``cache`` label, so they are exported as zero before the first request.
    Counters are registered once per adapter, so caches sharing a registry
    share one adapter and tell themselves apart with ``tags={"cache": ...}``.

    Requires `prometheus_client` package.
    """

    def __init__(
        self,
        *,
        cache: str = "default",
        namespace: str = "",
        registry: object | None = None,
    ) -> None:
        try:
            from prometheus_client import REGISTRY, Counter
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusCacheMetrics requires `prometheus_client` to be installed."
            ) from exc

        self._cache = cache
        self._counters = {}
        for name, documentation in _DOCUMENTATION.items():
            counter = Counter(
                # prometheus_client appends the _total suffix itself.
                name=name.removesuffix("_total"),
                documentation=documentation,
                namespace=namespace,
                labelnames=("cache",),
                registry=registry if registry is not None else REGISTRY,
            )
            counter.labels(cache=cache)
            self._counters[name] = counter

    def incr(self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None) -> None:
        counter = self._counters.get(name)
        if counter is None:
            raise KeyError(f"Unknown cache metric: {name}")
        labels = dict(tags or {})
        cache = labels.pop("cache", self._cache)
        if labels:
            raise ValueError(f"Unsupported labels for {name}: {sorted(labels)}")
        counter.labels(cache=str(cache)).inc(value)
