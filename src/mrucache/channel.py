"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Replaying result channel shared by every caller of one cache key.

A channel receives zero or more values followed by exactly one terminal
outcome (completion or error). Everything it has received is replayed to
subscribers that arrive later, so a channel can sit in a cache and serve both
in-flight and finished results through one interface.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Generator
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from .errors import ChannelClosedError, EmptyResultError

logger = logging.getLogger("mrucache.channel")

V = TypeVar("V")

ChannelState = Literal["pending", "completed", "failed"]

_END = object()


@dataclass(slots=True, eq=False)
class Subscription:
    """Handle returned by ``BroadcastChannel.subscribe``."""

    on_next: Callable[[Any], Any] | None = None
    on_error: Callable[[BaseException], Any] | None = None
    on_completed: Callable[[], Any] | None = None
    active: bool = True
    _channel: "BroadcastChannel[Any] | None" = field(default=None, repr=False)

    def dispose(self) -> None:
        """Stop receiving notifications. Never affects the shared computation."""
        if not self.active:
            return
        self.active = False
        if self._channel is not None:
            self._channel._unsubscribe(self)  # noqa: SLF001


class BroadcastChannel(Generic[V]):
    """
    Thread-safe, multi-subscriber, replaying result holder.

    Notifications are delivered while the channel's reentrant lock is held,
    which keeps replayed and live notifications in order for every
    subscriber. A callback may use the same channel again, but must return
    quickly and must not wait on other threads that publish to it.
    """

    def __init__(self, key: Any = None) -> None:
        self.key = key
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._values: list[V] = []
        self._state: ChannelState = "pending"
        self._error: BaseException | None = None
        self._subscribers: list[Subscription] = []

    def __repr__(self) -> str:
        return (
            f"BroadcastChannel(key={self.key!r}, state={self._state!r}, "
            f"values={len(self._values)})"
        )

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state != "pending"

    @property
    def failed(self) -> bool:
        return self._state == "failed"

    def values(self) -> list[V]:
        """Snapshot of the values received so far."""
        with self._lock:
            return list(self._values)

    def exception(self) -> BaseException | None:
        """The error the channel failed with, if any."""
        return self._error

    # Producer side

    def publish(self, value: V) -> None:
        with self._lock:
            self._ensure_open()
            self._values.append(value)
            self._changed.notify_all()
            for sub in list(self._subscribers):
                _call(sub.on_next, value)

    def complete(self) -> None:
        with self._lock:
            self._ensure_open()
            self._state = "completed"
            self._changed.notify_all()
            subscribers, self._subscribers = self._subscribers, []
            for sub in subscribers:
                _call(sub.on_completed)

    def fail(self, error: BaseException) -> None:
        with self._lock:
            self._ensure_open()
            self._state = "failed"
            self._error = error
            self._changed.notify_all()
            subscribers, self._subscribers = self._subscribers, []
            for sub in subscribers:
                _call(sub.on_error, error)

    def _ensure_open(self) -> None:
        if self._state != "pending":
            raise ChannelClosedError(
                f"channel for key {self.key!r} is already {self._state}"
            )

    # Consumer side

    def subscribe(
        self,
        on_next: Callable[[V], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        on_completed: Callable[[], Any] | None = None,
    ) -> Subscription:
        """
        Receive every value and the terminal outcome.

        Values already received are replayed immediately on the calling
        thread; later ones arrive on the publishing thread.
        """
        sub = Subscription(on_next, on_error, on_completed, _channel=self)
        with self._lock:
            for value in self._values:
                _call(on_next, value)
            if self._state == "completed":
                _call(on_completed)
                sub.active = False
            elif self._state == "failed":
                _call(on_error, self._error)
                sub.active = False
            else:
                self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def first(self, timeout: float | None = None) -> V:
        """
        Block until the first value is available and return it.

        Raises the channel's error if it failed first, ``EmptyResultError``
        if it completed without values, and ``TimeoutError`` on timeout.
        """
        with self._changed:
            ready = self._changed.wait_for(
                lambda: bool(self._values) or self._state != "pending",
                timeout=timeout,
            )
            if not ready:
                raise TimeoutError(
                    f"no result for key {self.key!r} within {timeout}s"
                )
            return self._first_locked()

    def _first_locked(self) -> V:
        if self._values:
            return self._values[0]
        if self._error is not None:
            raise self._error
        raise EmptyResultError(f"computation for key {self.key!r} produced no value")

    def __await__(self) -> Generator[Any, None, V]:
        return self._first_async().__await__()

    async def _first_async(self) -> V:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[V] = loop.create_future()

        def _on_next(value: V) -> None:
            loop.call_soon_threadsafe(_set_result, waiter, value)

        def _on_error(error: BaseException) -> None:
            loop.call_soon_threadsafe(_set_exception, waiter, error)

        def _on_completed() -> None:
            loop.call_soon_threadsafe(
                _set_exception,
                waiter,
                EmptyResultError(f"computation for key {self.key!r} produced no value"),
            )

        sub = self.subscribe(_on_next, _on_error, _on_completed)
        try:
            return await waiter
        finally:
            sub.dispose()

    async def __aiter__(self) -> AsyncIterator[V]:
        """Yield every value, then stop on completion or raise on error."""
        loop = asyncio.get_running_loop()
        inbox: asyncio.Queue[Any] = asyncio.Queue()

        def _push(item: Any) -> None:
            loop.call_soon_threadsafe(inbox.put_nowait, item)

        sub = self.subscribe(
            _push,
            lambda error: _push(_Failure(error)),
            lambda: _push(_END),
        )
        try:
            while True:
                item = await inbox.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            sub.dispose()


@dataclass(slots=True, frozen=True)
class _Failure:
    error: BaseException


def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:  # noqa: BLE001
        logger.exception("Channel subscriber callback failed")


def _set_result(waiter: asyncio.Future[Any], value: Any) -> None:
    if not waiter.done():
        waiter.set_result(value)


def _set_exception(waiter: asyncio.Future[Any], error: BaseException) -> None:
    if not waiter.done():
        waiter.set_exception(error)
