import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bus_eta.models.base import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    direction: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Edits of the route row itself; stop edits are tracked on stops.updated_at
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )

    stops: Mapped[list["Stop"]] = relationship(
        back_populates="route", order_by="Stop.order",
    )


class Stop(Base):
    __tablename__ = "stops"
    __table_args__ = (
        Index("ix_stops_route_order", "route_id", "order"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    route_id: Mapped[str] = mapped_column(String(64), ForeignKey("routes.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )

    route: Mapped["Route"] = relationship(back_populates="stops")


class Bus(Base):
    __tablename__ = "buses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bus_no: Mapped[str] = mapped_column(String(20), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Route of the active trip; set by trip start, cleared by trip end
    route_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("routes.id"), nullable=True)


class Rider(Base):
    __tablename__ = "riders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    bus_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("buses.id"), nullable=True)
    stop_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("stops.id"), nullable=True)


class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (
        Index("ix_trips_bus_status", "bus_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    bus_id: Mapped[str] = mapped_column(String(64), ForeignKey("buses.id"), nullable=False)
    route_id: Mapped[str] = mapped_column(String(64), ForeignKey("routes.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")  # active, completed
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    stops: Mapped[list["TripStop"]] = relationship(
        back_populates="trip", order_by="TripStop.stop_order",
    )


class TripStop(Base):
    __tablename__ = "trip_stops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[str] = mapped_column(String(32), ForeignKey("trips.id"), nullable=False, index=True)
    stop_id: Mapped[str] = mapped_column(String(64), ForeignKey("stops.id"), nullable=False)
    stop_order: Mapped[int] = mapped_column(Integer, nullable=False)
    # pending -> arrived -> completed, or pending -> skipped
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    arrival_time: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    departure_time: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    trip: Mapped["Trip"] = relationship(back_populates="stops")
    stop: Mapped["Stop"] = relationship()
