"""
Tests for per-document status broadcasting.
"""

import asyncio

import pytest

from certmap.worker.broadcaster import StatusBroadcaster


def status(n: int) -> dict:
    return {"docId": "d1", "status": "processing", "seq": n}


def test_initial_status_delivered_first():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=4)
        sub = broadcaster.subscribe("d1", {"docId": "d1", "status": "ready"})
        broadcaster.publish("d1", status(1))
        events = [await sub.get(timeout=1), await sub.get(timeout=1)]
        sub.close()
        return events

    first, second = asyncio.run(scenario())
    assert first["status"] == "ready"
    assert second["seq"] == 1


def test_publish_from_another_thread():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=4)
        sub = broadcaster.subscribe("d1")
        delivered = await asyncio.to_thread(broadcaster.publish, "d1", status(7))
        event = await sub.get(timeout=1)
        sub.close()
        return delivered, event

    delivered, event = asyncio.run(scenario())
    assert delivered == 1
    assert event["seq"] == 7


def test_only_matching_document():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=4)
        sub = broadcaster.subscribe("d1")
        other = broadcaster.publish("d2", {"docId": "d2", "status": "done"})
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.05)
        sub.close()
        return other

    assert asyncio.run(scenario()) == 0


def test_overflowing_subscriber_dropped_others_continue():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=2)
        slow = broadcaster.subscribe("d1")
        fast = broadcaster.subscribe("d1")

        received = []
        for n in range(1, 4):
            broadcaster.publish("d1", status(n))
            received.append((await fast.get(timeout=1))["seq"])

        # slow never read: its buffer filled on the third event
        count_after_overflow = broadcaster.subscriber_count("d1")
        delivered = broadcaster.publish("d1", status(4))
        received.append((await fast.get(timeout=1))["seq"])

        slow_events = [e["seq"] async for e in slow]
        fast.close()
        return received, count_after_overflow, delivered, slow_events, broadcaster.subscriber_count()

    received, count_after_overflow, delivered, slow_events, remaining = asyncio.run(scenario())
    assert received == [1, 2, 3, 4]
    assert count_after_overflow == 1
    assert delivered == 1
    # Oldest buffered event makes room for the end marker
    assert slow_events == [2]
    assert remaining == 0


def test_close_ends_subscriptions():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=4)
        sub = broadcaster.subscribe("d1", {"docId": "d1", "status": "ready"})
        first = await sub.get(timeout=1)
        broadcaster.close()
        rest = [e async for e in sub]
        return first, rest, broadcaster.subscriber_count()

    first, rest, count = asyncio.run(scenario())
    assert first["status"] == "ready"
    assert rest == []
    assert count == 0


def test_unsubscribed_receives_nothing():
    async def scenario():
        broadcaster = StatusBroadcaster(buffer_size=4)
        sub = broadcaster.subscribe("d1")
        sub.close()
        sub.close()
        return broadcaster.publish("d1", status(1)), broadcaster.subscriber_count("d1")

    assert asyncio.run(scenario()) == (0, 0)


def test_subscribe_needs_running_loop():
    with pytest.raises(RuntimeError):
        StatusBroadcaster().subscribe("d1")
