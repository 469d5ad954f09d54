"""Route REST API endpoints."""

from fastapi import APIRouter, HTTPException

from bus_eta.core.distance_accumulator import route_length_km
from bus_eta.schemas.route import RouteDetail, RouteStopInfo

router = APIRouter(prefix="/api/routes", tags=["routes"])

# Will be set by main.py
service = None


@router.get("/{route_id}", response_model=RouteDetail)
async def get_route(route_id: str):
    """Get route detail with ordered stops."""
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    route = await service.routes.get_route(route_id)
    if route is None:
        raise HTTPException(status_code=404, detail="Route not found")

    return RouteDetail(
        id=route.id,
        stops=[
            RouteStopInfo(
                id=s.id,
                name=s.name,
                lat=s.coordinate.latitude,
                lon=s.coordinate.longitude,
                order=s.order,
            )
            for s in route.stops
        ],
        length_km=round(route_length_km(route.stops), 2),
    )
