"""One-shot ETA lookups."""

from fastapi import APIRouter, HTTPException

from bus_eta.schemas.tracking import TrackingSnapshot

router = APIRouter(prefix="/api/tracking", tags=["tracking"])

# Will be set by main.py
service = None


@router.get("/riders/{rider_id}", response_model=TrackingSnapshot)
async def rider_eta(rider_id: str):
    """ETA of the rider's bus to the rider's stop, from the last known position."""
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return await service.rider_snapshot(rider_id)


@router.get("/buses/{bus_id}", response_model=TrackingSnapshot)
async def bus_eta(bus_id: str, stop_id: str | None = None):
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return await service.vehicle_snapshot(bus_id, stop_id)
