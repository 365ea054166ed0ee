"""
image_cache.py - Memoized, throttled downloads with on-disk cleanup.

Demonstrates the classic use case: an image cache that downloads each URL
once, keeps the most recently used files on disk, deletes evicted files, and
never runs more than a few downloads at a time.

Usage:
    python examples/image_cache.py
"""

import asyncio
import os
import tempfile

from mrucache import AsyncMRUCache, cached_map

WORKDIR = tempfile.mkdtemp(prefix="mrucache-")


async def download(url: str) -> str:
    # Stand-in for an HTTP request.
    await asyncio.sleep(0.2)
    name = url.rsplit("/", 1)[-1]
    # One file per fetch: a refetched URL must not reuse a path that
    # on_release is about to delete.
    fd, path = tempfile.mkstemp(dir=WORKDIR, prefix="img-", suffix=f"-{name}")
    with os.fdopen(fd, "w") as fh:
        fh.write(url)
    return path


def delete_file(path: str) -> None:
    print(f"evicted {path}")
    os.remove(path)


def main() -> None:
    urls = [f"https://example.com/img{i % 4}.jpg" for i in range(12)]

    with AsyncMRUCache(download, max_size=3, max_concurrent=2, on_release=delete_file) as images:
        # Blocking access from plain threads.
        print(images.get(urls[0]))

        async def show_all() -> None:
            async for path in cached_map(urls, images):
                print("ready", path)

        asyncio.run(show_all())


if __name__ == "__main__":
    main()
