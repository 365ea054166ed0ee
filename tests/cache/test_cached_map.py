from __future__ import annotations

import asyncio

import pytest

from mrucache import AsyncMRUCache, EventLoopScheduler, cached_map


def run_async(coro):
    return asyncio.run(coro)


def test_cached_map_memoizes_repeated_items():
    calls: list[int] = []

    async def fetch(key):
        calls.append(key)
        await asyncio.sleep(0.01)
        return key * 5

    async def scenario() -> list[int]:
        return [value async for value in cached_map([1, 2, 1, 3, 1], fetch, max_concurrent=2)]

    results = run_async(scenario())

    assert sorted(results) == [5, 5, 5, 10, 15]
    assert sorted(calls) == [1, 2, 3]


def test_cached_map_accepts_async_source_and_shared_cache():
    calls: list[str] = []

    async def fetch(key):
        calls.append(key)
        return key.upper()

    async def source():
        for item in ("a", "b", "a"):
            yield item

    async def scenario() -> list[str]:
        cache = AsyncMRUCache(fetch, max_size=4, scheduler=EventLoopScheduler.current())
        first = [value async for value in cached_map(source(), cache)]
        second = [value async for value in cached_map(["b"], cache)]
        return first + second

    results = run_async(scenario())

    assert sorted(results) == ["A", "A", "B", "B"]
    assert sorted(calls) == ["a", "b"]


def test_cached_map_flattens_multi_value_fetches():
    async def fetch(key):
        for index in range(key):
            yield index

    async def scenario() -> list[int]:
        return [value async for value in cached_map([2, 3], fetch)]

    assert sorted(run_async(scenario())) == [0, 0, 1, 1, 2]


def test_cached_map_propagates_first_error():
    async def fetch(key):
        if key == 0:
            raise ZeroDivisionError("boom")
        await asyncio.sleep(0.05)
        return 10 // key

    async def scenario() -> None:
        async for _ in cached_map([5, 0, 2], fetch):
            pass

    with pytest.raises(ZeroDivisionError, match="boom"):
        run_async(scenario())


def test_cached_map_on_empty_source_yields_nothing():
    async def scenario() -> list[int]:
        return [value async for value in cached_map([], lambda key: key)]

    assert run_async(scenario()) == []


def test_cached_map_propagates_source_error():
    async def fetch(key):
        return key * 2

    async def source():
        yield 1
        raise ValueError("source broke")

    async def scenario() -> list[int]:
        seen: list[int] = []

        async def consume() -> None:
            async for value in cached_map(source(), fetch):
                seen.append(value)

        with pytest.raises(ValueError, match="source broke"):
            await asyncio.wait_for(consume(), 1.0)
        return seen

    assert run_async(scenario()) in ([], [2])


def test_cached_map_propagates_sync_source_error():
    def source():
        yield "a"
        raise KeyError("gone")

    async def scenario() -> None:
        async def consume() -> None:
            async for _ in cached_map(source(), lambda key: key):
                pass

        await asyncio.wait_for(consume(), 1.0)

    with pytest.raises(KeyError, match="gone"):
        run_async(scenario())
