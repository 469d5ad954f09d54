"""Driver app endpoints: location ingest, heartbeat and bus status."""

import datetime
import logging

from fastapi import APIRouter, HTTPException

from bus_eta.config import settings
from bus_eta.core.entities import VehiclePosition
from bus_eta.core.geo import Coordinate
from bus_eta.schemas.bus import BusInfo, BusStatus, HeartbeatAck, LocationAccepted, LocationIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buses", tags=["buses"])

# Will be set by main.py
broadcaster = None
fleet = None


def _require_broadcaster():
    if broadcaster is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return broadcaster


@router.get("", response_model=list[BusInfo])
async def list_buses():
    """All buses with their active route and trip."""
    if fleet is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return await fleet.list_buses()


@router.post("/{bus_id}/location", response_model=LocationAccepted, status_code=202)
async def report_location(bus_id: str, body: LocationIn):
    """Publish a location fix to every session watching this bus."""
    bc = _require_broadcaster()
    if body.is_mocked and settings.reject_mocked_locations:
        logger.warning("Rejecting mocked location from bus %s", bus_id)
        return LocationAccepted(accepted=False, reason="mocked location")

    position = VehiclePosition(
        coordinate=Coordinate(body.latitude, body.longitude),
        speed_kmh=body.speed,
        heading=body.heading,
        timestamp=body.recorded_at or datetime.datetime.now(datetime.timezone.utc),
    )
    await bc.publish(bus_id, position)
    return LocationAccepted(accepted=True)


@router.post("/{bus_id}/heartbeat", response_model=HeartbeatAck)
async def heartbeat(bus_id: str):
    bc = _require_broadcaster()
    received_at = await bc.record_heartbeat(bus_id, ttl=settings.heartbeat_interval_seconds * 2)
    return HeartbeatAck(received_at=received_at)


@router.get("/{bus_id}", response_model=BusStatus)
async def get_bus(bus_id: str):
    """Liveness and last known position; online means a heartbeat within two intervals."""
    bc = _require_broadcaster()
    last_hb = await bc.last_heartbeat(bus_id)
    now = datetime.datetime.now(datetime.timezone.utc)
    online = (
        last_hb is not None
        and (now - last_hb).total_seconds() <= settings.heartbeat_interval_seconds * 2
    )

    status = BusStatus(id=bus_id, online=online, last_heartbeat=last_hb)
    position = await bc.get_last_position(bus_id)
    if position is not None:
        status.lat = position.coordinate.latitude
        status.lon = position.coordinate.longitude
        status.speed_kmh = position.speed_kmh
        status.timestamp = position.timestamp
    return status
