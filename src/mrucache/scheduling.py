"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Execution contexts that run fetch coroutines for ``AsyncMRUCache``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger("mrucache.scheduling")


@runtime_checkable
class Scheduler(Protocol):
    """Runs coroutines somewhere other than the caller's stack."""

    def submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Schedule ``coro``; must be callable from any thread."""

    def owns_current_thread(self) -> bool:
        """True when called from the thread that runs scheduled coroutines."""

    def close(self) -> None:
        """Release resources owned by the scheduler."""


class EventLoopScheduler:
    """Run coroutines on an event loop owned by the caller."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @classmethod
    def current(cls) -> "EventLoopScheduler":
        """Bind to the event loop running in the calling thread."""
        return cls(asyncio.get_running_loop())

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def owns_current_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def close(self) -> None:
        # The loop belongs to the caller.
        return None


class BackgroundLoopScheduler:
    """
    Run coroutines on a private event loop in a daemon thread.

    The thread starts on the first ``submit`` and stops on ``close``, which
    cancels whatever is still running.
    """

    def __init__(self, *, name: str = "mrucache-scheduler", shutdown_timeout_s: float = 5.0) -> None:
        self._name = name
        self._shutdown_timeout_s = shutdown_timeout_s
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        loop = self._ensure_loop(coro)
        asyncio.run_coroutine_threadsafe(coro, loop)

    def owns_current_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def close(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
            self._closed = True
        if loop is None or thread is None:
            return

        pending = asyncio.run_coroutine_threadsafe(_cancel_pending(), loop)
        try:
            pending.result(self._shutdown_timeout_s)
        except concurrent.futures.TimeoutError:
            logger.warning(
                "%s: pending fetches did not stop within %.1fs",
                self._name,
                self._shutdown_timeout_s,
            )
        loop.call_soon_threadsafe(loop.stop)
        thread.join(self._shutdown_timeout_s)
        if thread.is_alive():
            logger.warning("%s: loop thread did not exit", self._name)
            return
        loop.close()
        logger.info("%s stopped", self._name)

    def _ensure_loop(self, coro: Coroutine[Any, Any, Any]) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError(f"{self._name} is closed")
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            started = threading.Event()
            thread = threading.Thread(
                target=_run_loop,
                args=(loop, started),
                name=self._name,
                daemon=True,
            )
            thread.start()
            started.wait()
            self._loop = loop
            self._thread = thread
            logger.info("%s started", self._name)
            return loop


def _run_loop(loop: asyncio.AbstractEventLoop, started: threading.Event) -> None:
    asyncio.set_event_loop(loop)
    loop.call_soon(started.set)
    loop.run_forever()


async def _cancel_pending() -> None:
    current = asyncio.current_task()
    tasks = [task for task in asyncio.all_tasks() if task is not current]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def create_scheduler(name: str) -> Scheduler:
    """
    Build a scheduler from its configuration name.

    Names:
    - ``background`` (default): private loop in a daemon thread.
    - ``loop``: the event loop running in the calling thread.
    """
    key = name.strip().lower()
    if key in ("background", "thread", "default"):
        return BackgroundLoopScheduler()
    if key in ("loop", "current", "eventloop"):
        try:
            return EventLoopScheduler.current()
        except RuntimeError as exc:
            raise ValueError(
                "Scheduler 'loop' requires a running event loop in the calling thread"
            ) from exc
    raise ValueError(f"Unknown MRUCACHE_SCHEDULER: {name}")
