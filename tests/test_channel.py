from __future__ import annotations

import asyncio
import logging

import pytest

from workchannel import (
    BoundedWorkQueue,
    CancellationSource,
    ChannelClosed,
    ChannelEvent,
    OperationCancelled,
    UpstreamFault,
)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_dequeue_preserves_enqueue_order() -> None:
    async def runner() -> list[int | None]:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=4)
        for item in (3, 1, 2):
            await queue.enqueue(item)
        return [await queue.dequeue() for _ in range(3)]

    assert asyncio.run(runner()) == [3, 1, 2]


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BoundedWorkQueue(capacity=0)


def test_enqueue_rejects_end_of_stream_marker() -> None:
    queue: BoundedWorkQueue[int | None] = BoundedWorkQueue()

    with pytest.raises(TypeError):
        asyncio.run(queue.enqueue(None))
    with pytest.raises(TypeError):
        queue.try_enqueue(None)


def test_enqueue_waits_for_free_slot() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2)
        await queue.enqueue(1)
        await queue.enqueue(2)
        assert queue.full()

        pending = asyncio.create_task(queue.enqueue(3))
        await _settle()
        assert not pending.done()
        assert queue.qsize() == 2

        assert await queue.dequeue() == 1
        await asyncio.wait_for(pending, timeout=1)
        assert queue.qsize() == 2

    asyncio.run(runner())


def test_capacity_two_walkthrough() -> None:
    async def runner() -> list[int | None]:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2)
        await queue.enqueue(1)
        await queue.enqueue(2)
        third = asyncio.create_task(queue.enqueue(3))
        await _settle()
        assert not third.done()

        seen = [await queue.dequeue()]
        await asyncio.wait_for(third, timeout=1)
        seen.append(await queue.dequeue())
        assert queue.close() is True
        seen.append(await queue.dequeue())
        seen.append(await queue.dequeue())
        return seen

    assert asyncio.run(runner()) == [1, 2, 3, None]


def test_close_delivers_buffered_items_before_end_of_stream() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[str] = BoundedWorkQueue(capacity=3)
        for item in ("a", "b", "c"):
            queue.try_enqueue(item)
        queue.close()

        assert not queue.drained
        assert [await queue.dequeue() for _ in range(3)] == ["a", "b", "c"]
        assert queue.drained
        assert await queue.dequeue() is None
        assert await queue.dequeue() is None

    asyncio.run(runner())


def test_fault_surfaces_after_buffer_is_drained() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=3)
        queue.try_enqueue(1)
        queue.try_enqueue(2)
        fault = RuntimeError("disk on fire")
        queue.close(fault)

        assert await queue.dequeue() == 1
        assert await queue.dequeue() == 2
        with pytest.raises(UpstreamFault) as excinfo:
            await queue.dequeue()
        assert excinfo.value.inner is fault
        assert excinfo.value.__cause__ is fault
        # Terminal: keeps reporting the same fault.
        with pytest.raises(UpstreamFault):
            await queue.dequeue()

    asyncio.run(runner())


def test_enqueue_after_close_is_rejected() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2, name="jobs")
        queue.close()
        with pytest.raises(ChannelClosed) as excinfo:
            await queue.enqueue(1)
        assert excinfo.value.channel == "jobs"
        with pytest.raises(ChannelClosed):
            queue.try_enqueue(2)
        assert queue.qsize() == 0

    asyncio.run(runner())


def test_second_close_is_a_no_op() -> None:
    queue: BoundedWorkQueue[int] = BoundedWorkQueue()
    first = RuntimeError("first")

    assert queue.close(first) is True
    assert queue.close(RuntimeError("second")) is False
    assert queue.close() is False
    assert queue.fault is first


def test_close_wakes_parked_consumer() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue()
        pending = asyncio.create_task(queue.dequeue())
        await _settle()
        assert not pending.done()

        queue.close()
        assert await asyncio.wait_for(pending, timeout=1) is None

    asyncio.run(runner())


def test_close_fails_parked_producer() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=1)
        await queue.enqueue(1)
        pending = asyncio.create_task(queue.enqueue(2))
        await _settle()

        queue.close()
        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(pending, timeout=1)
        assert await queue.dequeue() == 1
        assert await queue.dequeue() is None

    asyncio.run(runner())


def test_cancellation_unblocks_dequeue_on_empty_queue() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue()
        source = CancellationSource()
        pending = asyncio.create_task(queue.dequeue(source.token))
        await _settle()
        assert not pending.done()

        source.cancel("stop")
        with pytest.raises(OperationCancelled) as excinfo:
            await asyncio.wait_for(pending, timeout=1)
        assert excinfo.value.reason == "stop"
        assert not queue.closed

    asyncio.run(runner())


def test_cancellation_unblocks_enqueue_on_full_queue() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=1)
        await queue.enqueue(1)
        source = CancellationSource()
        source.cancel_after(0.01)

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(queue.enqueue(2, source.token), timeout=1)
        assert queue.qsize() == 1
        assert not queue.closed

    asyncio.run(runner())


def test_cancelled_token_is_checked_before_taking_an_item() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue()
        queue.try_enqueue(1)
        source = CancellationSource()
        source.cancel()

        with pytest.raises(OperationCancelled):
            await queue.dequeue(source.token)
        assert queue.qsize() == 1

    asyncio.run(runner())


def test_task_cancellation_hands_wakeup_to_next_consumer() -> None:
    async def runner() -> None:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue()
        first = asyncio.create_task(queue.dequeue())
        second = asyncio.create_task(queue.dequeue())
        await _settle()

        queue.try_enqueue(7)
        first.cancel()

        assert await asyncio.wait_for(second, timeout=1) == 7
        assert first.cancelled()

    asyncio.run(runner())


def test_try_operations_do_not_wait() -> None:
    queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=1)

    assert queue.try_dequeue() is None
    assert queue.try_enqueue(1) is True
    assert queue.try_enqueue(2) is False
    assert queue.try_dequeue() == 1
    assert queue.empty()

    queue.close(ValueError("bad"))
    with pytest.raises(UpstreamFault):
        queue.try_dequeue()


def test_async_iteration_drains_until_closed() -> None:
    async def runner() -> list[int]:
        queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2)

        async def feed() -> None:
            for item in range(5):
                await queue.enqueue(item)
            queue.close()

        feeder = asyncio.create_task(feed())
        received = [item async for item in queue]
        await feeder
        return received

    assert asyncio.run(runner()) == [0, 1, 2, 3, 4]


def test_high_water_mark_tracks_peak_depth() -> None:
    queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=3)
    queue.try_enqueue(1)
    queue.try_enqueue(2)
    queue.try_dequeue()
    queue.try_enqueue(3)

    assert queue.high_water_mark == 2
    assert queue.capacity == 3


def test_listeners_receive_channel_events() -> None:
    events: list[ChannelEvent] = []
    queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2, name="jobs")
    queue.add_listener(events.append)

    queue.try_enqueue(1)
    queue.try_dequeue()
    queue.close()
    queue.remove_listener(events.append)
    queue.close()

    assert [event.kind for event in events] == ["enqueued", "dequeued", "closed"]
    assert events[0].as_dict() == {"kind": "enqueued", "channel": "jobs", "depth": 1, "item": 1}
    assert events[1].depth == 0


def test_failing_listener_does_not_lose_items(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="workchannel.channel")
    queue: BoundedWorkQueue[int] = BoundedWorkQueue(capacity=2, name="jobs")
    queue.try_enqueue(1)
    queue.try_enqueue(2)

    def explode(event: ChannelEvent) -> None:
        if event.kind == "dequeued":
            raise RuntimeError("observer broke")

    queue.add_listener(explode)

    async def runner() -> list[int | None]:
        return [await queue.dequeue(), await queue.dequeue()]

    assert asyncio.run(runner()) == [1, 2]
    assert "listener failed on dequeued event for channel jobs" in caplog.text
