"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bus_eta.api import buses, routes, tracking, trips, ws
from bus_eta.config import settings
from bus_eta.core.broadcaster import Broadcaster
from bus_eta.core.eta_calculator import EtaCalculator
from bus_eta.core.fleet import Fleet
from bus_eta.core.route_store import SqlTransportRepository
from bus_eta.core.route_watcher import RouteWatcher
from bus_eta.core.scheduler import create_scheduler
from bus_eta.core.tracking_service import TrackingService
from bus_eta.core.transport_client import TransportApiClient
from bus_eta.db.session import async_session, engine
from bus_eta.models import tables  # noqa: F401
from bus_eta.models.base import Base

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Initialize services
    broadcaster = Broadcaster(settings.redis_url, last_position_ttl=settings.last_position_ttl_seconds)
    try:
        await broadcaster.connect()
    except Exception:
        logger.exception("Failed to connect to Redis - positions stay in-process")

    api_client = None
    position_store = broadcaster
    if settings.position_store == "api" and settings.transport_api_url:
        api_client = TransportApiClient(
            settings.transport_api_url,
            timeout=settings.transport_api_timeout_seconds,
            token=settings.transport_api_token or None,
        )
        position_store = api_client

    repository = SqlTransportRepository(async_session)
    service = TrackingService(
        routes=repository,
        assignments=repository,
        positions=position_store,
        events=broadcaster,
        eta_calculator=EtaCalculator(
            min_valid_speed_kmh=settings.min_valid_speed_kmh,
            fallback_speed_kmh=settings.fallback_speed_kmh,
        ),
        last_position_timeout=settings.last_position_timeout_seconds,
    )

    fleet = Fleet(async_session)

    # Wire up API modules
    buses.broadcaster = broadcaster
    buses.fleet = fleet
    trips.fleet = fleet
    trips.sessions = service.registry
    routes.service = service
    tracking.service = service
    ws.service = service

    # Start scheduler
    watcher = RouteWatcher(repository, service.registry)
    scheduler = create_scheduler(watcher)
    scheduler.start()
    logger.info("Bus ETA tracker started - checking routes every %ds", settings.route_refresh_seconds)

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    if api_client:
        await api_client.close()
    await broadcaster.close()
    await engine.dispose()
    logger.info("Bus ETA tracker shut down")


app = FastAPI(
    title="School Bus ETA Tracker",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(buses.router)
app.include_router(routes.router)
app.include_router(tracking.router)
app.include_router(trips.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
