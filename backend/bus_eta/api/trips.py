"""Driver trip endpoints: start/end a trip and report progress at each stop."""

from fastapi import APIRouter, HTTPException

from bus_eta.core.errors import Conflict, NotFound
from bus_eta.schemas.trip import TripStart, TripStatus

router = APIRouter(prefix="/api/trips", tags=["trips"])

# Will be set by main.py
fleet = None
sessions = None


def _require_fleet():
    if fleet is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return fleet


async def _call(action):
    try:
        return await action
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))


async def _bus_changed(bus_id: str) -> None:
    if sessions is not None:
        await sessions.notify_vehicle_changed(bus_id)


@router.post("/start", response_model=TripStatus, status_code=201)
async def start_trip(body: TripStart):
    """Start a trip; the route becomes the bus's active route."""
    status = await _call(_require_fleet().start_trip(body.bus_id, body.route_id))
    await _bus_changed(body.bus_id)
    return status


@router.post("/{trip_id}/end", response_model=TripStatus)
async def end_trip(trip_id: str):
    status = await _call(_require_fleet().end_trip(trip_id))
    await _bus_changed(status.trip.bus_id)
    return status


@router.get("/{trip_id}/status", response_model=TripStatus)
async def trip_status(trip_id: str):
    return await _call(_require_fleet().trip_status(trip_id))


@router.post("/{trip_id}/stops/{stop_id}/arrive", response_model=TripStatus)
async def arrive_at_stop(trip_id: str, stop_id: str):
    return await _call(_require_fleet().arrive_at_stop(trip_id, stop_id))


@router.post("/{trip_id}/stops/{stop_id}/complete", response_model=TripStatus)
async def complete_stop(trip_id: str, stop_id: str):
    return await _call(_require_fleet().complete_stop(trip_id, stop_id))


@router.post("/{trip_id}/stops/{stop_id}/skip", response_model=TripStatus)
async def skip_stop(trip_id: str, stop_id: str):
    return await _call(_require_fleet().skip_stop(trip_id, stop_id))
