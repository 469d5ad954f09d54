import datetime

from pydantic import BaseModel

from bus_eta.core.entities import TrackingResult


class PositionInfo(BaseModel):
    lat: float
    lon: float
    speed_kmh: float | None = None
    heading: float | None = None
    timestamp: datetime.datetime | None = None


class TrackingResultInfo(BaseModel):
    nearest_stop_index: int
    nearest_stop_id: str | None = None
    remaining_distance_km: float  # rounded to 2 decimals
    eta_minutes: int | None = None
    reached: bool
    summary: str


class TrackingSnapshot(BaseModel):
    type: str = "snapshot"
    state: str
    stale: bool = False
    error: str | None = None
    vehicle_id: str | None = None
    route_id: str | None = None
    target_stop_id: str | None = None
    target_stop_name: str | None = None
    position: PositionInfo | None = None
    result: TrackingResultInfo | None = None


def format_summary(result: TrackingResult) -> str:
    """Display line, e.g. 'Arriving in 4 mins / 1.25 km away'."""
    if result.reached:
        return "Arrived"
    distance = f"{result.remaining_distance_km:.2f} km away"
    if result.eta_minutes is None:
        return distance
    return f"Arriving in {result.eta_minutes} mins / {distance}"


def snapshot_from_session(session, type: str = "snapshot") -> TrackingSnapshot:
    assignment = session.assignment
    route = session.route
    snapshot = TrackingSnapshot(
        type=type,
        state=session.state.value,
        stale=session.stale,
        error=str(session.error) if session.error else None,
        vehicle_id=assignment.vehicle_id if assignment else None,
        route_id=assignment.route_id if assignment else None,
        target_stop_id=assignment.stop_id if assignment else None,
    )

    if route is not None and assignment is not None:
        idx = route.index_of(assignment.stop_id)
        if idx >= 0:
            snapshot.target_stop_name = route.stops[idx].name or None

    position = session.position
    if position is not None:
        snapshot.position = PositionInfo(
            lat=position.coordinate.latitude,
            lon=position.coordinate.longitude,
            speed_kmh=position.speed_kmh,
            heading=position.heading,
            timestamp=position.timestamp,
        )

    result = session.result
    if result is not None:
        nearest_stop_id = None
        if route is not None and 0 <= result.nearest_stop_index < len(route.stops):
            nearest_stop_id = route.stops[result.nearest_stop_index].id
        snapshot.result = TrackingResultInfo(
            nearest_stop_index=result.nearest_stop_index,
            nearest_stop_id=nearest_stop_id,
            remaining_distance_km=round(result.remaining_distance_km, 2),
            eta_minutes=result.eta_minutes,
            reached=result.reached,
            summary=format_summary(result),
        )
    return snapshot
