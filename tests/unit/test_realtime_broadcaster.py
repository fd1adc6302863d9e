import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from inbox_hub.models.events import RealtimeEvent
from inbox_hub.models.types import RealtimeEventType
from inbox_hub.services.realtime_backplane import RedisBackplane
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.utils.metrics import MetricsCollector
from tests.factories import TENANT_A, TENANT_B


def event(tenant_id=TENANT_A, conversation_id="c1", seq=0):
    return RealtimeEvent(
        type=RealtimeEventType.CONVERSATION_UPDATED,
        tenant_id=tenant_id,
        conversation_id=conversation_id,
        payload={"seq": seq},
    )


async def test_fan_out_to_all_tenant_sessions():
    broadcaster = RealtimeBroadcaster()
    first, second = broadcaster.subscribe(TENANT_A), broadcaster.subscribe(TENANT_A)
    other = broadcaster.subscribe(TENANT_B)

    delivered = await broadcaster.publish(TENANT_A, event())

    assert delivered == 2
    assert len(first.drain()) == 1
    assert len(second.drain()) == 1
    assert other.drain() == []


async def test_publish_rejects_foreign_tenant_event():
    broadcaster = RealtimeBroadcaster()
    with pytest.raises(ValueError):
        await broadcaster.publish(TENANT_A, event(tenant_id=TENANT_B))


async def test_events_arrive_in_publish_order():
    broadcaster = RealtimeBroadcaster()
    subscription = broadcaster.subscribe(TENANT_A)

    for seq in range(5):
        await broadcaster.emit(RealtimeEventType.CONVERSATION_UPDATED, TENANT_A, "c1", {"seq": seq})

    assert [e.payload["seq"] for e in subscription.drain()] == [0, 1, 2, 3, 4]


async def test_slow_session_is_dropped():
    broadcaster = RealtimeBroadcaster(queue_size=2)
    slow = broadcaster.subscribe(TENANT_A)
    fast = broadcaster.subscribe(TENANT_A)

    await broadcaster.publish(TENANT_A, event(seq=0))
    await broadcaster.publish(TENANT_A, event(seq=1))
    fast.drain()
    await broadcaster.publish(TENANT_A, event(seq=2))

    assert slow.closed
    assert not fast.closed
    assert broadcaster.session_count(TENANT_A) == 1
    # queued events are still readable, then the session ends
    assert (await slow.get()).payload["seq"] == 0
    assert (await slow.get()).payload["seq"] == 1
    assert await slow.get() is None


async def test_subscription_iterates_until_closed():
    broadcaster = RealtimeBroadcaster()
    subscription = broadcaster.subscribe(TENANT_A)
    await broadcaster.publish(TENANT_A, event(seq=7))
    broadcaster.unsubscribe(subscription)

    received = [e.payload["seq"] async for e in subscription]

    assert received == [7]
    assert broadcaster.session_count(TENANT_A) == 0


async def test_ordered_sections_run_one_at_a_time():
    broadcaster = RealtimeBroadcaster()
    trace = []

    async def section(name):
        async with broadcaster.ordered("c1"):
            trace.append(f"{name}:enter")
            await asyncio.sleep(0)
            trace.append(f"{name}:exit")

    await asyncio.gather(section("a"), section("b"))

    assert trace == ["a:enter", "a:exit", "b:enter", "b:exit"]
    assert broadcaster._locks == {}


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, data):
        self.published.append((channel, data))


async def test_backplane_publishes_and_relays():
    redis = FakeRedis()
    broadcaster = RealtimeBroadcaster()
    backplane = RedisBackplane(redis, "inbox-hub")
    backplane.attach(broadcaster)
    subscription = broadcaster.subscribe(TENANT_A)

    assert await broadcaster.publish(TENANT_A, event(seq=3)) == 0
    channel, data = redis.published[0]
    assert channel == f"inbox-hub:tenant:{TENANT_A}:events"
    assert subscription.drain() == []

    backplane._relay(data)
    backplane._relay("not json")

    relayed = subscription.drain()
    assert len(relayed) == 1
    assert relayed[0].payload["seq"] == 3


class UnreachableRedis:
    async def publish(self, channel, data):
        raise RedisConnectionError("Connection refused")


async def test_backplane_outage_loses_event_quietly():
    metrics = MetricsCollector()
    broadcaster = RealtimeBroadcaster(metrics=metrics)
    RedisBackplane(UnreachableRedis(), "inbox-hub").attach(broadcaster)

    assert await broadcaster.publish(TENANT_A, event()) == 0
    assert metrics.registry.get_sample_value(
        "inbox_hub_realtime_publish_failures_total", {"event_type": "conversation.updated"}
    ) == 1.0
