"""Redis pub/sub fan-out of bus positions.

Positions are published on ``bus:positions:{bus_id}`` and the latest one is
kept under ``bus:last:{bus_id}`` so a new tracking session can start from the
last known fix. A relay task pattern-subscribes to the position channels and
hands every message to the local subscribers of that bus. Without Redis the
broadcaster works in-process only.
"""

import asyncio
import datetime
import logging

import orjson
import redis.asyncio as aioredis

from bus_eta.core.entities import VehiclePosition
from bus_eta.core.errors import SubscriptionFault
from bus_eta.core.geo import Coordinate
from bus_eta.core.ports import (
    ErrorCallback,
    PositionCallback,
    PositionEventSource,
    PositionStore,
    Subscription,
)

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "bus:positions:"
LAST_POSITION_PREFIX = "bus:last:"
HEARTBEAT_PREFIX = "bus:heartbeat:"


def encode_position(position: VehiclePosition) -> bytes:
    return orjson.dumps({
        "lat": position.coordinate.latitude,
        "lon": position.coordinate.longitude,
        "speed": position.speed_kmh,
        "heading": position.heading,
        "ts": position.timestamp.isoformat() if position.timestamp else None,
    })


def decode_position(payload: bytes | str) -> VehiclePosition:
    """Parse a published payload; raises ValueError on malformed data."""
    try:
        data = orjson.loads(payload)
        lat = float(data["lat"])
        lon = float(data["lon"])
        speed = data.get("speed")
        heading = data.get("heading")
        raw_ts = data.get("ts")
        return VehiclePosition(
            coordinate=Coordinate(lat, lon),
            speed_kmh=float(speed) if speed is not None else None,
            heading=float(heading) if heading is not None else None,
            timestamp=datetime.datetime.fromisoformat(raw_ts) if raw_ts else None,
        )
    except (orjson.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"malformed position payload: {e}") from e


class _Subscription(Subscription):
    def __init__(
        self,
        broadcaster: "Broadcaster",
        vehicle_id: str,
        on_position: PositionCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        self._broadcaster = broadcaster
        self.vehicle_id = vehicle_id
        self._on_position = on_position
        self._on_error = on_error
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcaster.unsubscribe(self)

    def deliver(self, position: VehiclePosition) -> None:
        if not self._closed:
            self._on_position(position)

    def fail(self, exc: Exception) -> None:
        if self._closed:
            return
        if self._on_error is not None:
            self._on_error(exc)
        self.close()


class Broadcaster(PositionEventSource, PositionStore):
    """Publishes bus positions to Redis and fans them out to subscribers."""

    def __init__(self, redis_url: str | None = None, last_position_ttl: int = 3600) -> None:
        self._redis_url = redis_url
        self._last_position_ttl = last_position_ttl
        self._redis: aioredis.Redis | None = None
        self._relay_task: asyncio.Task | None = None
        self._subscribers: dict[str, set[_Subscription]] = {}
        # Local copies for in-process mode and for Redis outages
        self._last_positions: dict[str, VehiclePosition] = {}
        self._heartbeats: dict[str, datetime.datetime] = {}

    @property
    def relaying(self) -> bool:
        return self._relay_task is not None and not self._relay_task.done()

    async def connect(self) -> None:
        if not self._redis_url:
            logger.info("No Redis configured - positions are fanned out in-process")
            return
        self._redis = aioredis.from_url(self._redis_url, decode_responses=False)
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        self._relay_task = asyncio.create_task(self._relay(pubsub))

    async def close(self) -> None:
        if self._relay_task:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay_task = None
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, vehicle_id: str, position: VehiclePosition) -> None:
        """Store the position as latest and push it to every subscriber of the bus."""
        self._last_positions[vehicle_id] = position
        if self._redis:
            payload = encode_position(position)
            try:
                await self._redis.set(
                    f"{LAST_POSITION_PREFIX}{vehicle_id}", payload, ex=self._last_position_ttl,
                )
                await self._redis.publish(f"{CHANNEL_PREFIX}{vehicle_id}", payload)
                if self.relaying:
                    return  # the relay delivers it back to local subscribers
            except Exception:
                logger.exception("Failed to publish position of bus %s to Redis", vehicle_id)
        self._dispatch(vehicle_id, position)

    async def get_last_position(self, vehicle_id: str) -> VehiclePosition | None:
        if self._redis:
            try:
                data = await self._redis.get(f"{LAST_POSITION_PREFIX}{vehicle_id}")
                if data:
                    return decode_position(data)
            except ValueError:
                logger.warning("Discarding malformed last position of bus %s", vehicle_id)
            except Exception:
                logger.exception("Failed to get last position of bus %s from Redis", vehicle_id)
        return self._last_positions.get(vehicle_id)

    async def record_heartbeat(self, vehicle_id: str, ttl: int) -> datetime.datetime:
        now = datetime.datetime.now(datetime.timezone.utc)
        self._heartbeats[vehicle_id] = now
        if self._redis:
            try:
                await self._redis.set(f"{HEARTBEAT_PREFIX}{vehicle_id}", now.isoformat(), ex=ttl)
            except Exception:
                logger.exception("Failed to store heartbeat of bus %s", vehicle_id)
        return now

    async def last_heartbeat(self, vehicle_id: str) -> datetime.datetime | None:
        if self._redis:
            try:
                raw = await self._redis.get(f"{HEARTBEAT_PREFIX}{vehicle_id}")
                if raw:
                    return datetime.datetime.fromisoformat(raw.decode())
            except Exception:
                logger.exception("Failed to get heartbeat of bus %s", vehicle_id)
        return self._heartbeats.get(vehicle_id)

    def subscribe(
        self,
        vehicle_id: str,
        on_position: PositionCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        if self._redis is not None and not self.relaying:
            # The relay died (see _relay); an explicit re-selection brings it back
            logger.info("Restarting Redis position relay")
            self._relay_task = asyncio.create_task(self._resubscribe())
        sub = _Subscription(self, vehicle_id, on_position, on_error)
        self._subscribers.setdefault(vehicle_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: _Subscription) -> None:
        subs = self._subscribers.get(sub.vehicle_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.vehicle_id]

    def subscriber_count(self, vehicle_id: str | None = None) -> int:
        if vehicle_id is not None:
            return len(self._subscribers.get(vehicle_id, ()))
        return sum(len(s) for s in self._subscribers.values())

    def _dispatch(self, vehicle_id: str, position: VehiclePosition) -> None:
        for sub in list(self._subscribers.get(vehicle_id, ())):
            try:
                sub.deliver(position)
            except Exception:
                logger.exception("Position subscriber for bus %s failed", vehicle_id)

    def _fail_all(self, exc: Exception) -> None:
        fault = SubscriptionFault(f"position relay stopped: {exc}")
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                try:
                    sub.fail(fault)
                except Exception:
                    logger.exception("Position subscriber error handler failed")

    async def _resubscribe(self) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        except Exception as exc:
            logger.exception("Failed to resubscribe to Redis positions")
            self._fail_all(exc)
            await pubsub.aclose()
            return
        await self._relay(pubsub)

    async def _relay(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode()
                vehicle_id = channel[len(CHANNEL_PREFIX):]
                try:
                    position = decode_position(message["data"])
                except ValueError as e:
                    logger.debug("Skipping malformed position on %s: %s", channel, e)
                    continue
                self._last_positions[vehicle_id] = position
                self._dispatch(vehicle_id, position)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Redis position relay failed")
            self._fail_all(exc)
        finally:
            try:
                await pubsub.aclose()
            except Exception:
                logger.debug("Failed to close Redis pubsub", exc_info=True)
