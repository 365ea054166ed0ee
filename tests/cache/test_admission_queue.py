from __future__ import annotations

import asyncio
import random
import threading
import time

import pytest

from mrucache import AdmissionQueue, CapacityError, ConsistencyError


def run_async(coro):
    return asyncio.run(coro)


def test_submit_grants_immediately_while_slots_are_free():
    queue = AdmissionQueue(2)

    first = queue.submit()
    second = queue.submit()
    third = queue.submit()

    assert [first.state, second.state, third.state] == ["granted", "granted", "queued"]
    assert queue.granted_count == 2
    assert queue.queued_count == 1


def test_grants_follow_submission_order():
    queue = AdmissionQueue(1)
    granted: list[int] = []

    tickets = [queue.submit(lambda t: granted.append(t.sequence)) for _ in range(3)]
    assert granted == [1]

    tickets[0].release()
    assert granted == [1, 2]

    queue.release()
    assert granted == [1, 2, 3]
    assert [t.state for t in tickets] == ["released", "released", "granted"]


def test_sequence_numbers_are_monotonic():
    queue = AdmissionQueue(3)
    sequences = [queue.submit().sequence for _ in range(5)]
    assert sequences == [1, 2, 3, 4, 5]


def test_release_without_holder_raises():
    queue = AdmissionQueue(1)
    with pytest.raises(ConsistencyError, match="no granted tickets"):
        queue.release()


def test_releasing_ticket_twice_is_noop():
    queue = AdmissionQueue(1)
    first = queue.submit()
    second = queue.submit()

    first.release()
    first.release()

    assert second.is_granted
    assert queue.granted_count == 1


def test_queued_ticket_can_be_withdrawn():
    queue = AdmissionQueue(1)
    granted: list[int] = []
    first = queue.submit()
    withdrawn = queue.submit(lambda t: granted.append(t.sequence))
    third = queue.submit(lambda t: granted.append(t.sequence))

    withdrawn.release()
    first.release()

    assert withdrawn.state == "released"
    assert granted == [third.sequence]


def test_grant_listener_on_granted_ticket_runs_immediately():
    queue = AdmissionQueue(1)
    ticket = queue.submit()
    seen: list[int] = []

    ticket.add_grant_listener(lambda t: seen.append(t.sequence))

    assert seen == [ticket.sequence]


def test_wait_granted_suspends_until_release():
    async def scenario() -> list[str]:
        queue = AdmissionQueue(1)
        events: list[str] = []
        holder = queue.submit()
        waiting = queue.submit()

        async def waiter() -> None:
            await waiting.wait_granted()
            events.append("granted")

        task = asyncio.create_task(waiter())
        await asyncio.sleep(0.01)
        events.append("releasing")
        holder.release()
        await asyncio.wait_for(task, 1.0)
        return events

    assert run_async(scenario()) == ["releasing", "granted"]


def test_wait_granted_blocking_times_out_while_queued():
    queue = AdmissionQueue(1)
    queue.submit()
    waiting = queue.submit()

    assert waiting.wait_granted_blocking(0.01) is False
    queue.release()
    assert waiting.wait_granted_blocking(0.01) is True


def test_granted_count_never_exceeds_limit_under_threads():
    queue = AdmissionQueue(3)
    lock = threading.Lock()
    running = 0
    peak = 0
    errors: list[BaseException] = []

    def on_grant(ticket):
        def work():
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(random.uniform(0, 0.002))
            with lock:
                running -= 1
            try:
                queue.assert_consistent()
            except ConsistencyError as exc:
                errors.append(exc)
            ticket.release()

        threading.Thread(target=work).start()

    def submitter():
        for _ in range(25):
            queue.submit(on_grant)

    threads = [threading.Thread(target=submitter) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    deadline = time.monotonic() + 5.0
    while (queue.granted_count or queue.queued_count) and time.monotonic() < deadline:
        time.sleep(0.01)

    assert errors == []
    assert peak <= 3
    assert queue.granted_count == 0
    assert queue.queued_count == 0


def test_withdrawing_ticket_wakes_coroutine_waiter():
    async def scenario() -> bool:
        queue = AdmissionQueue(1)
        queue.submit()
        waiting = queue.submit()
        task = asyncio.create_task(waiting.wait_granted())
        await asyncio.sleep(0.01)

        waiting.release()

        return await asyncio.wait_for(task, 0.5)

    assert run_async(scenario()) is False


def test_withdrawing_ticket_wakes_blocking_waiter():
    queue = AdmissionQueue(1)
    queue.submit()
    waiting = queue.submit()
    outcome: list[bool] = []
    thread = threading.Thread(target=lambda: outcome.append(waiting.wait_granted_blocking()))
    thread.start()
    time.sleep(0.01)

    waiting.release()
    thread.join(1.0)

    assert not thread.is_alive()
    assert outcome == [False]
    assert waiting.withdrawn is True


def test_grant_listener_never_runs_for_withdrawn_ticket():
    queue = AdmissionQueue(1)
    queue.submit()
    waiting = queue.submit()
    waiting.release()
    seen: list[int] = []

    waiting.add_grant_listener(lambda t: seen.append(t.sequence))

    assert seen == []


def test_wait_granted_reports_grant():
    async def scenario() -> bool:
        queue = AdmissionQueue(1)
        ticket = queue.submit()
        return await ticket.wait_granted()

    assert run_async(scenario()) is True


@pytest.mark.parametrize("limit", [0, -1])
def test_invalid_limit_is_rejected(limit):
    with pytest.raises(CapacityError, match="max_concurrent"):
        AdmissionQueue(limit)
