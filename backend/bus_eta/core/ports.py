"""Collaborator interfaces the tracking session depends on."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable

from bus_eta.core.entities import Assignment, Route, VehiclePosition

PositionCallback = Callable[[VehiclePosition], None]
ErrorCallback = Callable[[Exception], None]


class RouteRepository(ABC):
    """Read-only access to routes and their ordered stops."""

    @abstractmethod
    async def get_route(self, route_id: str) -> Route | None:
        raise NotImplementedError

    @abstractmethod
    async def route_revisions(self) -> dict[str, Hashable]:
        """Opaque revision per route id; a changed value means the route or
        its stops were edited."""


class AssignmentResolver(ABC):
    """Maps a bus or a rider to the route (and stop) to track."""

    @abstractmethod
    async def resolve_vehicle(self, vehicle_id: str) -> Assignment | None:
        raise NotImplementedError

    @abstractmethod
    async def resolve_rider(self, rider_id: str) -> Assignment | None:
        raise NotImplementedError


class PositionStore(ABC):
    @abstractmethod
    async def get_last_position(self, vehicle_id: str) -> VehiclePosition | None:
        """Most recent known position of the bus, if any."""


class Subscription(ABC):
    """Handle for one live subscription; close() stops further callbacks."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class PositionEventSource(ABC):
    """Push-based stream of position samples keyed by bus id."""

    @abstractmethod
    def subscribe(
        self,
        vehicle_id: str,
        on_position: PositionCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        raise NotImplementedError
