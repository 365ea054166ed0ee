#!/usr/bin/env python3
"""
Cache benchmark utility for hit rate/throughput characterization.

Usage examples:
  PYTHONPATH=src python scripts/cache_benchmark.py
  PYTHONPATH=src python scripts/cache_benchmark.py --keys 500 --max-size 100 --concurrency 8
"""

from __future__ import annotations

import argparse
import asyncio
import random
import statistics
import time

from mrucache import AsyncMRUCache, EventLoopScheduler


async def run_benchmark(
    *,
    num_requests: int,
    num_keys: int,
    max_size: int,
    concurrency: int,
    latency_ms: float,
    seed: int,
) -> None:
    latency_s = latency_ms / 1000.0
    fetches = 0

    async def fetch(key: int) -> int:
        nonlocal fetches
        fetches += 1
        await asyncio.sleep(latency_s)
        return key * key

    cache = AsyncMRUCache(
        fetch,
        max_size,
        concurrency,
        scheduler=EventLoopScheduler.current(),
    )
    rng = random.Random(seed)
    # Skewed key distribution so a small cache still sees hits.
    keys = [int(rng.paretovariate(1.2)) % num_keys for _ in range(num_requests)]
    waits: list[float] = []

    async def request(key: int) -> None:
        began = time.perf_counter()
        await cache.async_get(key)
        waits.append(time.perf_counter() - began)

    started = time.perf_counter()
    await asyncio.gather(*(request(key) for key in keys))
    elapsed = time.perf_counter() - started

    p50 = statistics.median(waits) if waits else 0.0
    p95 = sorted(waits)[int(0.95 * (len(waits) - 1))] if waits else 0.0

    print(f"requests={num_requests}")
    print(f"distinct_keys={len(set(keys))}")
    print(f"max_size={max_size}")
    print(f"concurrency={concurrency}")
    print(f"fetch_latency_ms={latency_ms:.2f}")
    print(f"fetches={fetches}")
    print(f"coalesced_or_cached={num_requests - fetches}")
    print(f"elapsed_s={elapsed:.3f}")
    print(f"request_wait_p50_ms={p50 * 1000:.2f}")
    print(f"request_wait_p95_ms={p95 * 1000:.2f}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cache benchmark utility")
    parser.add_argument("--requests", type=int, default=2000)
    parser.add_argument("--keys", type=int, default=200)
    parser.add_argument("--max-size", type=int, default=50)
    parser.add_argument("--concurrency", type=int, default=5)
    parser.add_argument("--latency-ms", type=float, default=5.0)
    parser.add_argument("--seed", type=int, default=7)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(
        run_benchmark(
            num_requests=args.requests,
            num_keys=args.keys,
            max_size=args.max_size,
            concurrency=args.concurrency,
            latency_ms=args.latency_ms,
            seed=args.seed,
        )
    )


if __name__ == "__main__":
    main()
