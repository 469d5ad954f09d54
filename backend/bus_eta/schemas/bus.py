import datetime

from pydantic import BaseModel, Field


class LocationIn(BaseModel):
    """Location fix posted by the driver app (speed already in km/h)."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float | None = Field(default=None, ge=0)
    heading: float | None = None
    is_mocked: bool = False
    recorded_at: datetime.datetime | None = None


class LocationAccepted(BaseModel):
    accepted: bool
    reason: str | None = None


class HeartbeatAck(BaseModel):
    status: str = "ok"
    received_at: datetime.datetime


class BusStatus(BaseModel):
    id: str
    online: bool
    last_heartbeat: datetime.datetime | None = None
    lat: float | None = None
    lon: float | None = None
    speed_kmh: float | None = None
    timestamp: datetime.datetime | None = None


class BusInfo(BaseModel):
    id: str
    bus_no: str
    capacity: int
    route_id: str | None = None
    active_trip_id: str | None = None
