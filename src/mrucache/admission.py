"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

FIFO admission control that bounds how many computations run at once.

Every computation asks for a slot by submitting a ticket. Tickets are granted
strictly in submission order while fewer than ``max_concurrent`` are held; a
holder gives its slot back with ``release()``, which grants the next ticket.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import CapacityError, ConsistencyError

logger = logging.getLogger("mrucache.admission")

TicketState = Literal["queued", "granted", "released"]
GrantCallback = Callable[["AdmissionTicket"], Any]
Wakeup = Callable[[], Any]


@dataclass(slots=True, eq=False)
class AdmissionTicket:
    """
    One request for an execution slot.

    A ticket settles exactly once: either it is granted, or it is withdrawn
    by ``release()`` while still queued.
    """

    sequence: int
    state: TicketState = "queued"
    withdrawn: bool = False
    _queue: "AdmissionQueue | None" = field(default=None, repr=False)
    _listeners: list[GrantCallback] = field(default_factory=list, repr=False)
    _wakeups: list[Wakeup] = field(default_factory=list, repr=False)
    _settled: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def is_granted(self) -> bool:
        return self.state == "granted"

    def release(self) -> None:
        """
        Give this ticket's slot back, or withdraw it if still queued.

        Releasing an already released ticket is a no-op.
        """
        self._bound_queue().release(self)

    def add_grant_listener(self, callback: GrantCallback) -> None:
        """
        Call ``callback(ticket)`` once the ticket is granted.

        Runs now if the ticket was already granted; never runs for a
        withdrawn ticket.
        """
        self._bound_queue()._add_listener(self, callback)  # noqa: SLF001

    async def wait_granted(self) -> bool:
        """
        Suspend the calling coroutine until this ticket settles.

        Returns True once granted, False if the ticket was withdrawn.
        """
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            loop.call_soon_threadsafe(_resolve, waiter)

        self._bound_queue()._add_wakeup(self, _wake)  # noqa: SLF001
        await waiter
        return not self.withdrawn

    def wait_granted_blocking(self, timeout: float | None = None) -> bool:
        """Block the calling thread until granted; False on timeout or withdrawal."""
        return self._settled.wait(timeout) and not self.withdrawn

    def _bound_queue(self) -> "AdmissionQueue":
        if self._queue is None:
            raise ConsistencyError(f"ticket {self.sequence} is not bound to a queue")
        return self._queue


def _resolve(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


_Settled = tuple[AdmissionTicket, list[GrantCallback], list[Wakeup]]


class AdmissionQueue:
    """Thread-safe FIFO slot allocator with at most ``max_concurrent`` holders."""

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise CapacityError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._waiting: deque[AdmissionTicket] = deque()
        # Granted tickets keyed by sequence, in grant order.
        self._holders: dict[int, AdmissionTicket] = {}
        logger.debug("AdmissionQueue created (max_concurrent=%d)", max_concurrent)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def granted_count(self) -> int:
        with self._lock:
            return len(self._holders)

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._waiting)

    def submit(self, on_grant: GrantCallback | None = None) -> AdmissionTicket:
        """
        Enqueue a new ticket and grant queued tickets while slots are free.

        ``on_grant`` is called with the ticket once it is granted. It runs
        outside the queue lock, on the thread that caused the grant: the
        submitting thread when a slot is free, otherwise the releasing one.
        """
        with self._lock:
            ticket = AdmissionTicket(sequence=next(self._sequence), _queue=self)
            if on_grant is not None:
                ticket._listeners.append(on_grant)  # noqa: SLF001
            self._waiting.append(ticket)
            logger.debug(
                "Ticket %d submitted (granted=%d, queued=%d)",
                ticket.sequence,
                len(self._holders),
                len(self._waiting),
            )
            settled = self._promote_locked()
        self._notify(settled)
        return ticket

    def release(self, ticket: AdmissionTicket | None = None) -> None:
        """
        Free one slot and grant the next queued ticket, if any.

        Without ``ticket`` the earliest granted ticket is released. A queued
        ticket is withdrawn instead; its waiters wake up and its grant
        listeners never run.
        """
        with self._lock:
            if ticket is None:
                if not self._holders:
                    raise ConsistencyError("release() called with no granted tickets")
                sequence = next(iter(self._holders))
                ticket = self._holders.pop(sequence)
            elif ticket.state == "released":
                return
            elif ticket.state == "queued":
                self._waiting.remove(ticket)
                ticket.state = "released"
                ticket.withdrawn = True
                ticket._listeners.clear()  # noqa: SLF001
                wakeups = self._settle_locked(ticket)
                logger.debug("Ticket %d withdrawn before grant", ticket.sequence)
                settled: list[_Settled] = [(ticket, [], wakeups)]
            else:
                if self._holders.pop(ticket.sequence, None) is None:
                    raise ConsistencyError(
                        f"ticket {ticket.sequence} is granted but not held"
                    )
            if not ticket.withdrawn:
                ticket.state = "released"
                logger.debug(
                    "Ticket %d released (granted=%d, queued=%d)",
                    ticket.sequence,
                    len(self._holders),
                    len(self._waiting),
                )
                settled = self._promote_locked()
        self._notify(settled)

    def assert_consistent(self) -> None:
        """Raise ``ConsistencyError`` if more tickets are granted than allowed."""
        with self._lock:
            held = len(self._holders)
            if held > self._max_concurrent:
                raise ConsistencyError(
                    f"{held} tickets granted, max_concurrent={self._max_concurrent}"
                )
            if self._waiting and held < self._max_concurrent:
                raise ConsistencyError("tickets queued while slots are free")

    def _add_listener(self, ticket: AdmissionTicket, callback: GrantCallback) -> None:
        with self._lock:
            if ticket.state == "queued":
                ticket._listeners.append(callback)  # noqa: SLF001
                return
            if ticket.withdrawn:
                return
        callback(ticket)

    def _add_wakeup(self, ticket: AdmissionTicket, wakeup: Wakeup) -> None:
        with self._lock:
            if ticket.state == "queued":
                ticket._wakeups.append(wakeup)  # noqa: SLF001
                return
        wakeup()

    def _settle_locked(self, ticket: AdmissionTicket) -> list[Wakeup]:
        ticket._settled.set()  # noqa: SLF001
        wakeups = list(ticket._wakeups)  # noqa: SLF001
        ticket._wakeups.clear()  # noqa: SLF001
        return wakeups

    def _promote_locked(self) -> list[_Settled]:
        granted: list[_Settled] = []
        while self._waiting and len(self._holders) < self._max_concurrent:
            ticket = self._waiting.popleft()
            ticket.state = "granted"
            self._holders[ticket.sequence] = ticket
            listeners = list(ticket._listeners)  # noqa: SLF001
            ticket._listeners.clear()  # noqa: SLF001
            granted.append((ticket, listeners, self._settle_locked(ticket)))
            logger.debug("Ticket %d granted", ticket.sequence)
        return granted

    def _notify(self, settled: list[_Settled]) -> None:
        for ticket, listeners, wakeups in settled:
            for callback in listeners:
                try:
                    callback(ticket)
                except Exception:  # noqa: BLE001
                    logger.exception("Grant callback failed for ticket %d", ticket.sequence)
            for wakeup in wakeups:
                wakeup()
