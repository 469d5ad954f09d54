"""Creates tracking sessions wired to the configured collaborators."""

import logging
from collections.abc import Callable

from bus_eta.core.eta_calculator import EtaCalculator
from bus_eta.core.ports import AssignmentResolver, PositionEventSource, PositionStore, RouteRepository
from bus_eta.core.session_registry import SessionRegistry
from bus_eta.core.tracking_session import DEFAULT_LAST_POSITION_TIMEOUT_S, TrackingSession
from bus_eta.schemas.tracking import TrackingSnapshot, snapshot_from_session

logger = logging.getLogger(__name__)


class TrackingService:
    """Owns the shared collaborators; each observer gets its own session."""

    def __init__(
        self,
        routes: RouteRepository,
        assignments: AssignmentResolver,
        positions: PositionStore,
        events: PositionEventSource,
        eta_calculator: EtaCalculator | None = None,
        registry: SessionRegistry | None = None,
        last_position_timeout: float = DEFAULT_LAST_POSITION_TIMEOUT_S,
    ) -> None:
        self.routes = routes
        self.assignments = assignments
        self.positions = positions
        self.events = events
        self.eta_calculator = eta_calculator or EtaCalculator()
        self.registry = registry or SessionRegistry()
        self.last_position_timeout = last_position_timeout

    def open_session(
        self, on_update: Callable[[TrackingSession], None] | None = None,
    ) -> TrackingSession:
        session = TrackingSession(
            self.routes,
            self.assignments,
            self.positions,
            self.events,
            eta_calculator=self.eta_calculator,
            on_update=on_update,
            last_position_timeout=self.last_position_timeout,
        )
        self.registry.add(session)
        return session

    def close_session(self, session: TrackingSession) -> None:
        session.close()
        self.registry.discard(session)

    async def rider_snapshot(self, rider_id: str) -> TrackingSnapshot:
        """One-shot ETA for a rider from the last known position."""
        session = self.open_session()
        try:
            await session.select_rider(rider_id)
            return snapshot_from_session(session)
        finally:
            self.close_session(session)

    async def vehicle_snapshot(self, vehicle_id: str, stop_id: str | None = None) -> TrackingSnapshot:
        session = self.open_session()
        try:
            await session.select_vehicle(vehicle_id, stop_id)
            return snapshot_from_session(session)
        finally:
            self.close_session(session)
