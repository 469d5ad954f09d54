"""Bus trips along their routes and per-stop progress.

Starting a trip makes its route the bus's active route, which is what
assignment resolution reads; ending the trip clears it again.
"""

import datetime
import logging
import uuid

from sqlalchemy import select

from bus_eta.core.errors import Conflict, NotFound
from bus_eta.models.tables import Bus, Route, Stop, Trip, TripStop
from bus_eta.schemas.bus import BusInfo
from bus_eta.schemas.trip import TripInfo, TripStatus, TripStopInfo

logger = logging.getLogger(__name__)

TRIP_ACTIVE = "active"
TRIP_COMPLETED = "completed"

STOP_PENDING = "pending"
STOP_ARRIVED = "arrived"
STOP_COMPLETED = "completed"
STOP_SKIPPED = "skipped"


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Fleet:
    """Trip bookkeeping through an async session factory."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def list_buses(self) -> list[BusInfo]:
        async with self.session_factory() as session:
            result = await session.execute(select(Bus).order_by(Bus.bus_no, Bus.id))
            buses = result.scalars().all()
            active = await session.execute(
                select(Trip.bus_id, Trip.id).where(Trip.status == TRIP_ACTIVE)
            )
            active_trips = {row.bus_id: row.id for row in active}

        return [
            BusInfo(
                id=b.id,
                bus_no=b.bus_no,
                capacity=b.capacity,
                route_id=b.route_id,
                active_trip_id=active_trips.get(b.id),
            )
            for b in buses
        ]

    async def start_trip(self, bus_id: str, route_id: str) -> TripStatus:
        async with self.session_factory() as session:
            bus = await session.get(Bus, bus_id)
            if bus is None:
                raise NotFound(f"bus {bus_id} not found")
            if await session.get(Route, route_id) is None:
                raise NotFound(f"route {route_id} not found")

            result = await session.execute(
                select(Stop).where(Stop.route_id == route_id).order_by(Stop.order, Stop.id)
            )
            stops = result.scalars().all()
            if not stops:
                raise Conflict(f"route {route_id} has no stops")

            active = await session.execute(
                select(Trip.id).where(Trip.bus_id == bus_id, Trip.status == TRIP_ACTIVE)
            )
            if active.first() is not None:
                raise Conflict(f"bus {bus_id} already has an active trip")

            trip = Trip(
                id=uuid.uuid4().hex,
                bus_id=bus_id,
                route_id=route_id,
                status=TRIP_ACTIVE,
                started_at=_now(),
            )
            session.add(trip)
            session.add_all([
                TripStop(trip_id=trip.id, stop_id=s.id, stop_order=i, status=STOP_PENDING)
                for i, s in enumerate(stops)
            ])
            bus.route_id = route_id
            await session.commit()
            trip_id = trip.id

        logger.info("Bus %s started trip %s on route %s", bus_id, trip_id, route_id)
        return await self.trip_status(trip_id)

    async def end_trip(self, trip_id: str) -> TripStatus:
        """Complete the trip; untouched stops are marked skipped."""
        async with self.session_factory() as session:
            trip = await self._active_trip(session, trip_id)
            now = _now()
            trip.status = TRIP_COMPLETED
            trip.ended_at = now
            for ts in await self._trip_stops(session, trip_id):
                if ts.status == STOP_PENDING:
                    ts.status = STOP_SKIPPED
                elif ts.status == STOP_ARRIVED:
                    ts.status = STOP_COMPLETED
                    ts.departure_time = now

            bus = await session.get(Bus, trip.bus_id)
            if bus is not None and bus.route_id == trip.route_id:
                bus.route_id = None
            bus_id = trip.bus_id
            await session.commit()

        logger.info("Bus %s ended trip %s", bus_id, trip_id)
        return await self.trip_status(trip_id)

    async def trip_status(self, trip_id: str) -> TripStatus:
        async with self.session_factory() as session:
            trip = await session.get(Trip, trip_id)
            if trip is None:
                raise NotFound(f"trip {trip_id} not found")
            result = await session.execute(
                select(TripStop, Stop)
                .join(Stop, TripStop.stop_id == Stop.id)
                .where(TripStop.trip_id == trip_id)
                .order_by(TripStop.stop_order)
            )
            rows = result.all()

        return TripStatus(
            trip=TripInfo(
                id=trip.id,
                bus_id=trip.bus_id,
                route_id=trip.route_id,
                status=trip.status,
                started_at=trip.started_at,
                ended_at=trip.ended_at,
            ),
            stops=[
                TripStopInfo(
                    stop_id=ts.stop_id,
                    stop_name=stop.name,
                    stop_order=ts.stop_order,
                    status=ts.status,
                    lat=stop.lat,
                    lon=stop.lon,
                    arrival_time=ts.arrival_time,
                    departure_time=ts.departure_time,
                )
                for ts, stop in rows
            ],
        )

    async def arrive_at_stop(self, trip_id: str, stop_id: str) -> TripStatus:
        async with self.session_factory() as session:
            await self._active_trip(session, trip_id)
            trip_stops = await self._trip_stops(session, trip_id)
            target = self._find_stop(trip_stops, trip_id, stop_id)
            if target.status != STOP_PENDING:
                raise Conflict(f"stop {stop_id} is already {target.status}")
            current = next((ts for ts in trip_stops if ts.status == STOP_ARRIVED), None)
            if current is not None:
                raise Conflict(f"bus is still at stop {current.stop_id}")
            target.status = STOP_ARRIVED
            target.arrival_time = _now()
            await session.commit()
        return await self.trip_status(trip_id)

    async def complete_stop(self, trip_id: str, stop_id: str) -> TripStatus:
        async with self.session_factory() as session:
            await self._active_trip(session, trip_id)
            target = self._find_stop(await self._trip_stops(session, trip_id), trip_id, stop_id)
            if target.status != STOP_ARRIVED:
                raise Conflict(f"stop {stop_id} is {target.status}, not arrived")
            target.status = STOP_COMPLETED
            target.departure_time = _now()
            await session.commit()
        return await self.trip_status(trip_id)

    async def skip_stop(self, trip_id: str, stop_id: str) -> TripStatus:
        async with self.session_factory() as session:
            await self._active_trip(session, trip_id)
            target = self._find_stop(await self._trip_stops(session, trip_id), trip_id, stop_id)
            if target.status != STOP_PENDING:
                raise Conflict(f"stop {stop_id} is already {target.status}")
            target.status = STOP_SKIPPED
            await session.commit()
        return await self.trip_status(trip_id)

    # ------------------------------------------------------------------

    @staticmethod
    async def _active_trip(session, trip_id: str) -> Trip:
        trip = await session.get(Trip, trip_id)
        if trip is None:
            raise NotFound(f"trip {trip_id} not found")
        if trip.status != TRIP_ACTIVE:
            raise Conflict(f"trip {trip_id} is {trip.status}")
        return trip

    @staticmethod
    async def _trip_stops(session, trip_id: str) -> list[TripStop]:
        result = await session.execute(
            select(TripStop).where(TripStop.trip_id == trip_id).order_by(TripStop.stop_order)
        )
        return list(result.scalars().all())

    @staticmethod
    def _find_stop(trip_stops: list[TripStop], trip_id: str, stop_id: str) -> TripStop:
        for ts in trip_stops:
            if ts.stop_id == stop_id:
                return ts
        raise NotFound(f"stop {stop_id} is not on trip {trip_id}")
