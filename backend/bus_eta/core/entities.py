"""Route, stop and tracking value types shared by the tracking pipeline."""

import datetime
from dataclasses import dataclass, field
from enum import Enum

from bus_eta.core.geo import Coordinate

# Route.index_of() result when the stop is not on the route
UNRESOLVED_INDEX = -1


@dataclass(frozen=True)
class Stop:
    id: str
    coordinate: Coordinate
    order: int
    name: str = ""


@dataclass(frozen=True)
class Route:
    id: str
    stops: tuple[Stop, ...] = field(default_factory=tuple)

    @classmethod
    def from_stops(cls, route_id: str, stops) -> "Route":
        """Build a route with stops sorted by order, ties broken by stop id."""
        ordered = sorted(stops, key=lambda s: (s.order, s.id))
        return cls(id=route_id, stops=tuple(ordered))

    def index_of(self, stop_id: str | None) -> int:
        if stop_id is None:
            return UNRESOLVED_INDEX
        for i, stop in enumerate(self.stops):
            if stop.id == stop_id:
                return i
        return UNRESOLVED_INDEX


@dataclass(frozen=True)
class VehiclePosition:
    coordinate: Coordinate
    speed_kmh: float | None = None
    timestamp: datetime.datetime | None = None
    heading: float | None = None


@dataclass(frozen=True)
class Assignment:
    """Which bus to watch, on which route, and optionally the rider's stop."""

    vehicle_id: str
    route_id: str
    stop_id: str | None = None


@dataclass(frozen=True)
class TrackingResult:
    nearest_stop_index: int
    remaining_distance_km: float
    eta_minutes: int | None
    reached: bool


class SessionState(str, Enum):
    UNBOUND = "unbound"
    RESOLVING = "resolving"
    IDLE = "idle"
    TRACKING = "tracking"
