from pydantic import BaseModel


class RouteStopInfo(BaseModel):
    id: str
    name: str
    lat: float
    lon: float
    order: int


class RouteDetail(BaseModel):
    id: str
    stops: list[RouteStopInfo] = []
    length_km: float = 0.0
