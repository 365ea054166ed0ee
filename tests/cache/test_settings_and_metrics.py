from __future__ import annotations

import asyncio
import threading

import pytest

from mrucache import (
    BackgroundLoopScheduler,
    CacheSettings,
    CapacityError,
    EventLoopScheduler,
    NoOpCacheMetrics,
    create_scheduler,
)


def test_settings_defaults_from_empty_env(monkeypatch):
    for name in (
        "MRUCACHE_MAX_SIZE",
        "MRUCACHE_MAX_CONCURRENT",
        "MRUCACHE_SCHEDULER",
        "MRUCACHE_CHECK_INVARIANTS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = CacheSettings.from_env()

    assert settings == CacheSettings()
    assert settings.max_size == 50
    assert settings.max_concurrent == 5
    assert settings.scheduler == "background"
    assert settings.check_invariants is False


def test_settings_read_env_overrides(monkeypatch):
    monkeypatch.setenv("MRUCACHE_MAX_SIZE", "8")
    monkeypatch.setenv("MRUCACHE_MAX_CONCURRENT", " 2 ")
    monkeypatch.setenv("MRUCACHE_SCHEDULER", "loop")
    monkeypatch.setenv("MRUCACHE_CHECK_INVARIANTS", "yes")

    settings = CacheSettings.from_env()

    assert settings == CacheSettings(
        max_size=8, max_concurrent=2, scheduler="loop", check_invariants=True
    )


def test_settings_reject_invalid_bounds(monkeypatch):
    monkeypatch.setenv("MRUCACHE_MAX_SIZE", "0")
    with pytest.raises(CapacityError, match="max_size"):
        CacheSettings.from_env()

    with pytest.raises(CapacityError, match="max_concurrent"):
        CacheSettings(max_concurrent=0).validate()


def test_settings_reject_non_integer_env(monkeypatch):
    monkeypatch.delenv("MRUCACHE_MAX_SIZE", raising=False)
    monkeypatch.setenv("MRUCACHE_MAX_CONCURRENT", "many")
    with pytest.raises(ValueError, match="MRUCACHE_MAX_CONCURRENT must be an integer"):
        CacheSettings.from_env()


def test_settings_blank_env_uses_defaults(monkeypatch):
    monkeypatch.setenv("MRUCACHE_MAX_SIZE", "  ")
    monkeypatch.setenv("MRUCACHE_SCHEDULER", "")
    monkeypatch.delenv("MRUCACHE_MAX_CONCURRENT", raising=False)
    monkeypatch.delenv("MRUCACHE_CHECK_INVARIANTS", raising=False)

    assert CacheSettings.from_env() == CacheSettings()


def test_create_scheduler_by_name():
    scheduler = create_scheduler("background")
    assert isinstance(scheduler, BackgroundLoopScheduler)
    assert scheduler.running is False
    scheduler.close()

    async def scenario():
        return create_scheduler("loop")

    assert isinstance(asyncio.run(scenario()), EventLoopScheduler)


def test_create_scheduler_errors():
    with pytest.raises(ValueError, match="Unknown MRUCACHE_SCHEDULER"):
        create_scheduler("gpu")
    with pytest.raises(ValueError, match="running event loop"):
        create_scheduler("loop")


def test_background_scheduler_runs_and_stops():
    scheduler = BackgroundLoopScheduler(name="test-scheduler")
    ran = threading.Event()
    results: list[bool] = []

    async def job():
        results.append(scheduler.owns_current_thread())
        ran.set()

    scheduler.submit(job())
    assert ran.wait(1.0)
    assert scheduler.running
    scheduler.close()

    assert results == [True]
    assert scheduler.owns_current_thread() is False
    with pytest.raises(RuntimeError, match="closed"):
        scheduler.submit(job())


def test_noop_metrics_accepts_any_counter():
    NoOpCacheMetrics().incr("anything", 3, tags={"k": "v"})


def test_prometheus_metrics_increments_counters():
    prometheus_client = pytest.importorskip("prometheus_client")
    from mrucache import PrometheusCacheMetrics

    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusCacheMetrics(cache="thumbs", registry=registry)

    metrics.incr("mrucache_hits_total")
    metrics.incr("mrucache_hits_total", 2)
    metrics.incr("mrucache_misses_total", tags={"cache": "images"})

    assert registry.get_sample_value("mrucache_hits_total", {"cache": "thumbs"}) == 3.0
    assert (
        registry.get_sample_value("mrucache_misses_total", {"cache": "images"}) == 1.0
    )


def test_prometheus_metrics_predeclares_every_cache_counter():
    prometheus_client = pytest.importorskip("prometheus_client")
    from mrucache import PrometheusCacheMetrics

    registry = prometheus_client.CollectorRegistry()
    PrometheusCacheMetrics(registry=registry)

    for name in (
        "mrucache_hits_total",
        "mrucache_misses_total",
        "mrucache_evictions_total",
        "mrucache_fetch_started_total",
        "mrucache_fetch_completed_total",
        "mrucache_fetch_failed_total",
    ):
        assert registry.get_sample_value(name, {"cache": "default"}) == 0.0


def test_prometheus_metrics_rejects_unknown_counters_and_labels():
    prometheus_client = pytest.importorskip("prometheus_client")
    from mrucache import PrometheusCacheMetrics

    metrics = PrometheusCacheMetrics(registry=prometheus_client.CollectorRegistry())

    with pytest.raises(KeyError, match="Unknown cache metric"):
        metrics.incr("mrucache_bogus_total")
    with pytest.raises(ValueError, match="Unsupported labels"):
        metrics.incr("mrucache_hits_total", tags={"region": "eu"})
