"""SQL-backed route, stop and assignment lookups."""

import logging

from sqlalchemy import func, select

from bus_eta.core.entities import Assignment, Route, Stop
from bus_eta.core.geo import Coordinate
from bus_eta.core.ports import AssignmentResolver, RouteRepository
from bus_eta.models.tables import Bus, Rider
from bus_eta.models.tables import Route as RouteRow
from bus_eta.models.tables import Stop as StopRow

logger = logging.getLogger(__name__)


class SqlTransportRepository(RouteRepository, AssignmentResolver):
    """Reads routes and bus/rider assignments through an async session factory."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def get_route(self, route_id: str) -> Route | None:
        async with self.session_factory() as session:
            route = await session.get(RouteRow, route_id)
            if route is None:
                return None
            result = await session.execute(
                select(StopRow)
                .where(StopRow.route_id == route_id)
                .order_by(StopRow.order, StopRow.id)
            )
            rows = result.scalars().all()

        stops = [
            Stop(id=r.id, coordinate=Coordinate(r.lat, r.lon), order=r.order, name=r.name)
            for r in rows
        ]
        logger.debug("Route %s: loaded %d stops", route_id, len(stops))
        return Route.from_stops(route_id, stops)

    async def route_revisions(self) -> dict[str, tuple]:
        """Revision per route: (route updated_at, stop count, latest stop updated_at).

        The stop count catches deleted stops, which leave no timestamp behind.
        """
        stop_stats = (
            select(
                StopRow.route_id,
                func.count(StopRow.id).label("stop_count"),
                func.max(StopRow.updated_at).label("stops_updated_at"),
            )
            .group_by(StopRow.route_id)
            .subquery()
        )
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    RouteRow.id,
                    RouteRow.updated_at,
                    stop_stats.c.stop_count,
                    stop_stats.c.stops_updated_at,
                ).outerjoin(stop_stats, stop_stats.c.route_id == RouteRow.id)
            )
            return {
                row.id: (row.updated_at, row.stop_count or 0, row.stops_updated_at)
                for row in result
            }

    async def resolve_vehicle(self, vehicle_id: str) -> Assignment | None:
        async with self.session_factory() as session:
            bus = await session.get(Bus, vehicle_id)
        if bus is None or bus.route_id is None:
            return None
        return Assignment(vehicle_id=bus.id, route_id=bus.route_id)

    async def resolve_rider(self, rider_id: str) -> Assignment | None:
        async with self.session_factory() as session:
            rider = await session.get(Rider, rider_id)
            if rider is None or rider.bus_id is None:
                return None
            bus = await session.get(Bus, rider.bus_id)
        if bus is None or bus.route_id is None:
            return None
        return Assignment(vehicle_id=bus.id, route_id=bus.route_id, stop_id=rider.stop_id)
