"""Tracks live sessions so route edits and trip changes reach the sessions they affect."""

import logging
from collections.abc import Callable

from bus_eta.core.entities import SessionState
from bus_eta.core.errors import DataUnavailable
from bus_eta.core.tracking_session import TrackingSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: set[TrackingSession] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: TrackingSession) -> None:
        self._sessions.add(session)

    def discard(self, session: TrackingSession) -> None:
        self._sessions.discard(session)

    async def notify_route_changed(self, route_id: str) -> int:
        """Re-resolve every open session bound to route_id; returns how many."""
        refreshed = await self._refresh(lambda s: s.route_id == route_id)
        if refreshed:
            logger.info("Route %s changed: refreshed %d session(s)", route_id, refreshed)
        return refreshed

    async def notify_vehicle_changed(self, vehicle_id: str) -> int:
        """Re-resolve sessions after a bus started or ended a trip.

        Sessions still waiting for an assignment are retried as well, since a
        rider's bus without an active trip resolves to nothing.
        """
        def affected(session: TrackingSession) -> bool:
            if session.assignment is not None and session.assignment.vehicle_id == vehicle_id:
                return True
            return (
                session.state is SessionState.RESOLVING
                and isinstance(session.error, DataUnavailable)
            )

        refreshed = await self._refresh(affected)
        if refreshed:
            logger.info("Bus %s trip changed: refreshed %d session(s)", vehicle_id, refreshed)
        return refreshed

    async def _refresh(self, affected: Callable[[TrackingSession], bool]) -> int:
        refreshed = 0
        for session in list(self._sessions):
            if session.closed:
                self._sessions.discard(session)
                continue
            if not affected(session):
                continue
            try:
                await session.refresh()
                refreshed += 1
            except Exception:
                logger.exception("Failed to refresh tracking session")
        return refreshed
