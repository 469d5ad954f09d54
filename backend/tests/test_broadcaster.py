"""Tests for the position Broadcaster in in-process mode."""

import asyncio
import datetime

import pytest
from conftest import position_at

from bus_eta.core.broadcaster import Broadcaster, decode_position, encode_position
from bus_eta.core.entities import SessionState, VehiclePosition
from bus_eta.core.errors import SubscriptionFault
from bus_eta.core.geo import Coordinate
from bus_eta.core.tracking_session import TrackingSession


class FakePubSub:
    """Yields the given messages, then fails like a dropped Redis connection.

    With hold=True it stays connected after the messages instead.
    """

    def __init__(self, messages, hold=False):
        self.messages = messages
        self.hold = hold
        self.patterns = []
        self.closed = False

    async def psubscribe(self, pattern):
        self.patterns.append(pattern)

    async def listen(self):
        for message in self.messages:
            yield message
        if self.hold:
            await asyncio.Event().wait()
        raise ConnectionError("connection lost")

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """Hands out the given pubsub objects one per pubsub() call."""

    def __init__(self, pubsubs):
        self.pubsubs = list(pubsubs)

    def pubsub(self):
        return self.pubsubs.pop(0)

    async def aclose(self):
        pass


def test_decode_encoded_position():
    ts = datetime.datetime(2026, 3, 2, 7, 45, tzinfo=datetime.timezone.utc)
    position = VehiclePosition(coordinate=Coordinate(28.61, 77.21), speed_kmh=32.4, timestamp=ts, heading=90.0)
    assert decode_position(encode_position(position)) == position


def test_decode_malformed_payload():
    with pytest.raises(ValueError):
        decode_position(b"not json")
    with pytest.raises(ValueError):
        decode_position(b'{"lat": 28.6}')


@pytest.mark.asyncio
async def test_publish_reaches_only_that_bus():
    broadcaster = Broadcaster()
    await broadcaster.connect()
    got_7, got_8 = [], []
    broadcaster.subscribe("bus-7", got_7.append)
    broadcaster.subscribe("bus-8", got_8.append)

    await broadcaster.publish("bus-7", position_at(0))

    assert got_7 == [position_at(0)]
    assert got_8 == []
    assert await broadcaster.get_last_position("bus-7") == position_at(0)
    assert await broadcaster.get_last_position("bus-8") is None


@pytest.mark.asyncio
async def test_closed_subscription_stops_delivery():
    broadcaster = Broadcaster()
    got = []
    sub = broadcaster.subscribe("bus-7", got.append)
    assert broadcaster.subscriber_count("bus-7") == 1

    sub.close()
    sub.close()
    await broadcaster.publish("bus-7", position_at(1))

    assert got == []
    assert sub.closed
    assert broadcaster.subscriber_count() == 0


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    broadcaster = Broadcaster()
    got = []

    def broken(position):
        raise RuntimeError("boom")

    broadcaster.subscribe("bus-7", broken)
    broadcaster.subscribe("bus-7", got.append)
    await broadcaster.publish("bus-7", position_at(2))

    assert got == [position_at(2)]


@pytest.mark.asyncio
async def test_relay_dispatches_then_reports_failure():
    broadcaster = Broadcaster()
    got, errors = [], []
    sub = broadcaster.subscribe("bus-7", got.append, errors.append)
    pubsub = FakePubSub([
        {"type": "psubscribe", "channel": b"bus:positions:*", "data": 1},
        {"type": "pmessage", "channel": b"bus:positions:bus-7", "data": encode_position(position_at(1))},
        {"type": "pmessage", "channel": b"bus:positions:bus-7", "data": b"garbage"},
    ])

    await broadcaster._relay(pubsub)

    assert got == [position_at(1)]
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionFault)
    assert sub.closed
    assert pubsub.closed
    assert await broadcaster.get_last_position("bus-7") == position_at(1)


@pytest.mark.asyncio
async def test_heartbeat():
    broadcaster = Broadcaster()
    assert await broadcaster.last_heartbeat("bus-7") is None

    received = await broadcaster.record_heartbeat("bus-7", ttl=60)

    assert await broadcaster.last_heartbeat("bus-7") == received


@pytest.mark.asyncio
async def test_session_follows_published_positions(routes, assignments):
    broadcaster = Broadcaster()
    await broadcaster.publish("bus-7", position_at(0, speed_kmh=12))
    session = TrackingSession(routes, assignments, broadcaster, broadcaster)

    assert await session.select_rider("rider-1") is SessionState.TRACKING
    assert session.result.nearest_stop_index == 0

    await broadcaster.publish("bus-7", position_at(2, speed_kmh=12))
    assert session.result.reached is True

    session.close()
    assert broadcaster.subscriber_count("bus-7") == 0
    await broadcaster.close()


@pytest.mark.asyncio
async def test_relay_restarts_on_next_subscribe():
    def pmessage(position):
        return {"type": "pmessage", "channel": b"bus:positions:bus-7", "data": encode_position(position)}

    dropped = FakePubSub([])
    healthy = FakePubSub([pmessage(position_at(2))], hold=True)
    broadcaster = Broadcaster("redis://test")
    broadcaster._redis = FakeRedis([dropped, healthy])

    errors = []
    broadcaster.subscribe("bus-7", lambda position: None, errors.append)
    await broadcaster._relay_task
    assert isinstance(errors[0], SubscriptionFault)
    assert not broadcaster.relaying

    got = []
    broadcaster.subscribe("bus-7", got.append)
    for _ in range(5):
        await asyncio.sleep(0)

    assert broadcaster.relaying
    assert healthy.patterns == ["bus:positions:*"]
    assert got == [position_at(2)]

    await broadcaster.close()
    assert healthy.closed
