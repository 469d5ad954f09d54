import datetime

from pydantic import BaseModel


class TripStart(BaseModel):
    bus_id: str
    route_id: str


class TripInfo(BaseModel):
    id: str
    bus_id: str
    route_id: str
    status: str
    started_at: datetime.datetime
    ended_at: datetime.datetime | None = None


class TripStopInfo(BaseModel):
    stop_id: str
    stop_name: str
    stop_order: int
    status: str
    lat: float
    lon: float
    arrival_time: datetime.datetime | None = None
    departure_time: datetime.datetime | None = None


class TripStatus(BaseModel):
    trip: TripInfo
    stops: list[TripStopInfo] = []
