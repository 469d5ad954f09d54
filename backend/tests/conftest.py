"""In-memory collaborators for the tracking ports and a seeded SQLite database."""

import asyncio
import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from bus_eta.core.entities import Assignment, Route, Stop, VehiclePosition
from bus_eta.core.geo import Coordinate
from bus_eta.core.ports import (
    AssignmentResolver,
    PositionEventSource,
    PositionStore,
    RouteRepository,
    Subscription,
)
from bus_eta.models.base import Base
from bus_eta.models.tables import Bus, Rider
from bus_eta.models.tables import Route as RouteRow
from bus_eta.models.tables import Stop as StopRow

# Three stops a few hundred meters apart in central Delhi
DELHI_STOPS = [
    Stop(id="s0", coordinate=Coordinate(28.6139, 77.2090), order=0, name="Gate"),
    Stop(id="s1", coordinate=Coordinate(28.6145, 77.2095), order=1, name="Market"),
    Stop(id="s2", coordinate=Coordinate(28.6150, 77.2100), order=2, name="School"),
]


def position_at(index: int, speed_kmh: float | None = 0.0) -> VehiclePosition:
    return VehiclePosition(coordinate=DELHI_STOPS[index].coordinate, speed_kmh=speed_kmh)


class FakeRoutes(RouteRepository):
    def __init__(self, routes: dict[str, Route] | None = None) -> None:
        self.routes = routes or {}
        self.revisions: dict[str, datetime.datetime] = {}
        self.calls = 0

    async def get_route(self, route_id):
        self.calls += 1
        return self.routes.get(route_id)

    async def route_revisions(self):
        return dict(self.revisions)


class FakeAssignments(AssignmentResolver):
    def __init__(self) -> None:
        self.vehicles: dict[str, Assignment] = {}
        self.riders: dict[str, Assignment] = {}

    async def resolve_vehicle(self, vehicle_id):
        return self.vehicles.get(vehicle_id)

    async def resolve_rider(self, rider_id):
        return self.riders.get(rider_id)


class FakePositions(PositionStore):
    def __init__(self) -> None:
        self.positions: dict[str, VehiclePosition] = {}
        self.delay: float = 0.0
        self.fail = False

    async def get_last_position(self, vehicle_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("position store down")
        return self.positions.get(vehicle_id)


class FakeSubscription(Subscription):
    def __init__(self, vehicle_id, on_position, on_error) -> None:
        self.vehicle_id = vehicle_id
        self.on_position = on_position
        self.on_error = on_error
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def push(self, position: VehiclePosition) -> None:
        """Deliver a sample even if closed, like a late message in flight."""
        self.on_position(position)


class FakeEvents(PositionEventSource):
    def __init__(self) -> None:
        self.handles: list[FakeSubscription] = []

    def subscribe(self, vehicle_id, on_position, on_error=None):
        handle = FakeSubscription(vehicle_id, on_position, on_error)
        self.handles.append(handle)
        return handle

    @property
    def open_handles(self) -> list[FakeSubscription]:
        return [h for h in self.handles if not h.closed]

    def emit(self, vehicle_id: str, position: VehiclePosition) -> None:
        for handle in self.open_handles:
            if handle.vehicle_id == vehicle_id:
                handle.push(position)


@pytest.fixture
def routes():
    return FakeRoutes({"r1": Route.from_stops("r1", DELHI_STOPS)})


@pytest.fixture
def assignments():
    fake = FakeAssignments()
    fake.vehicles["bus-7"] = Assignment(vehicle_id="bus-7", route_id="r1")
    fake.riders["rider-1"] = Assignment(vehicle_id="bus-7", route_id="r1", stop_id="s2")
    return fake


@pytest.fixture
def positions():
    return FakePositions()


@pytest.fixture
def events():
    return FakeEvents()


EDITED_AT = datetime.datetime(2026, 3, 2, 6, 30)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Temporary SQLite database with two routes, two buses and three riders."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bus_eta.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as session:
        session.add_all([
            RouteRow(id="r1", name="Morning North", direction="to school", updated_at=EDITED_AT),
            RouteRow(id="r2", name="Empty", updated_at=EDITED_AT),
        ])
        await session.flush()
        session.add_all([
            # Inserted out of order; "s1b" ties with "s1" on order
            StopRow(id="s2", route_id="r1", name="School", lat=28.6150, lon=77.2100, order=2),
            StopRow(id="s1b", route_id="r1", name="Market East", lat=28.6146, lon=77.2096, order=1),
            StopRow(id="s0", route_id="r1", name="Gate", lat=28.6139, lon=77.2090, order=0),
            StopRow(id="s1", route_id="r1", name="Market", lat=28.6145, lon=77.2095, order=1),
        ])
        session.add_all([
            Bus(id="bus-7", bus_no="DL 1PC 0007", capacity=40, route_id="r1"),
            Bus(id="bus-8", bus_no="DL 1PC 0008", capacity=32, route_id=None),
        ])
        await session.flush()
        session.add_all([
            Rider(id="rider-1", name="Asha", bus_id="bus-7", stop_id="s2"),
            Rider(id="rider-2", name="Dev", bus_id="bus-8", stop_id="s0"),
            Rider(id="rider-3", name="Ira", bus_id=None, stop_id=None),
        ])
        await session.commit()

    yield factory
    await engine.dispose()
