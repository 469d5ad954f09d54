"""Tracking session: binds one bus's live positions to ETA recomputation.

A session moves through unbound -> resolving -> idle -> tracking. Selecting a
target releases the live subscription, loads the route, fetches the last
known position once and then subscribes to the live stream. Every sample is
matched to the nearest stop and turned into a TrackingResult synchronously
inside the event-source callback.
"""

import asyncio
import dataclasses
import functools
import logging
from collections.abc import Awaitable, Callable

from bus_eta.core.distance_accumulator import remaining_distance_km
from bus_eta.core.entities import (
    UNRESOLVED_INDEX,
    Assignment,
    Route,
    SessionState,
    TrackingResult,
    VehiclePosition,
)
from bus_eta.core.errors import DataUnavailable, InvalidSample, SubscriptionFault, TrackingError
from bus_eta.core.eta_calculator import EtaCalculator
from bus_eta.core.ports import (
    AssignmentResolver,
    PositionEventSource,
    PositionStore,
    RouteRepository,
    Subscription,
)
from bus_eta.core.route_indexer import nearest_index

logger = logging.getLogger(__name__)

DEFAULT_LAST_POSITION_TIMEOUT_S = 5.0


class TrackingSession:
    """Watches one bus for one observer and keeps the latest TrackingResult."""

    def __init__(
        self,
        routes: RouteRepository,
        assignments: AssignmentResolver,
        positions: PositionStore,
        events: PositionEventSource,
        eta_calculator: EtaCalculator | None = None,
        on_update: Callable[["TrackingSession"], None] | None = None,
        last_position_timeout: float = DEFAULT_LAST_POSITION_TIMEOUT_S,
    ) -> None:
        self._routes = routes
        self._assignments = assignments
        self._positions = positions
        self._events = events
        self._eta = eta_calculator or EtaCalculator()
        self._on_update = on_update
        self._last_position_timeout = last_position_timeout

        self._state = SessionState.UNBOUND
        self._reselect: Callable[[], Awaitable[SessionState]] | None = None
        self._assignment: Assignment | None = None
        self._route: Route | None = None
        self._position: VehiclePosition | None = None
        self._result: TrackingResult | None = None
        self._subscription: Subscription | None = None
        # Bumped whenever the subscription is released; callbacks and
        # in-flight selections carrying an older value are ignored.
        self._generation = 0
        self._closed = False

        self.stale = False
        self.error: TrackingError | None = None

    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def assignment(self) -> Assignment | None:
        return self._assignment

    @property
    def route(self) -> Route | None:
        return self._route

    @property
    def position(self) -> VehiclePosition | None:
        return self._position

    @property
    def result(self) -> TrackingResult | None:
        return self._result

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def route_id(self) -> str | None:
        return self._assignment.route_id if self._assignment else None

    @property
    def has_subscription(self) -> bool:
        return self._subscription is not None

    # ------------------------------------------------------------------
    # Target selection

    async def select_rider(self, rider_id: str) -> SessionState:
        """Track the bus assigned to a rider, with ETA to the rider's stop."""
        gen = self._begin(functools.partial(self.select_rider, rider_id))
        try:
            assignment = await self._assignments.resolve_rider(rider_id)
        except Exception:
            logger.exception("Failed to resolve rider %s", rider_id)
            assignment = None
        if gen != self._generation:
            return self._state
        if assignment is None:
            self._unavailable(f"no bus assigned to rider {rider_id}")
            return self._state
        await self._bind(gen, assignment)
        return self._state

    async def select_vehicle(self, vehicle_id: str, stop_id: str | None = None) -> SessionState:
        """Track a bus on its active route; ETA is computed only with stop_id."""
        gen = self._begin(functools.partial(self.select_vehicle, vehicle_id, stop_id))
        try:
            assignment = await self._assignments.resolve_vehicle(vehicle_id)
        except Exception:
            logger.exception("Failed to resolve bus %s", vehicle_id)
            assignment = None
        if gen != self._generation:
            return self._state
        if assignment is None:
            self._unavailable(f"no active route for bus {vehicle_id}")
            return self._state
        if stop_id is not None:
            assignment = dataclasses.replace(assignment, stop_id=stop_id)
        await self._bind(gen, assignment)
        return self._state

    async def select(self, assignment: Assignment) -> SessionState:
        """Track an already resolved assignment."""
        gen = self._begin(functools.partial(self.select, assignment))
        await self._bind(gen, assignment)
        return self._state

    async def refresh(self) -> SessionState:
        """Re-run the last selection, e.g. after the backing route was edited."""
        if self._closed:
            raise RuntimeError("tracking session is closed")
        if self._reselect is None:
            return self._state
        return await self._reselect()

    async def retry(self) -> SessionState:
        """Explicit re-selection after a subscription fault or missing data."""
        return await self.refresh()

    def close(self) -> None:
        """Release the live subscription and discard all state.

        Safe to call more than once; callbacks arriving afterwards are no-ops.
        """
        if self._closed:
            return
        self._release()
        self._closed = True
        self._state = SessionState.UNBOUND
        self._reselect = None
        self._assignment = None
        self._route = None
        self._position = None
        self._result = None
        self.stale = False
        self.error = None

    # ------------------------------------------------------------------
    # Recomputation

    def recompute(self, position: VehiclePosition) -> TrackingResult:
        """Derive a TrackingResult for position on the current route and target.

        Pure with respect to session state: the same position always gives the
        same result for a given route and target.
        """
        if not position.coordinate.is_valid:
            raise InvalidSample(f"invalid coordinate {position.coordinate}")
        if self._route is None or not self._route.stops or self._assignment is None:
            raise DataUnavailable("no route loaded")

        stops = self._route.stops
        nearest = nearest_index(position.coordinate, stops)
        to_index = self._route.index_of(self._assignment.stop_id)

        if to_index != UNRESOLVED_INDEX and nearest >= to_index:
            return TrackingResult(
                nearest_stop_index=nearest,
                remaining_distance_km=0.0,
                eta_minutes=0,
                reached=True,
            )

        remaining = remaining_distance_km(stops, nearest, to_index)
        eta = None
        if to_index != UNRESOLVED_INDEX:
            eta = self._eta.estimate(remaining, position.speed_kmh)
        return TrackingResult(
            nearest_stop_index=nearest,
            remaining_distance_km=remaining,
            eta_minutes=eta,
            reached=False,
        )

    # ------------------------------------------------------------------

    def _begin(self, reselect: Callable[[], Awaitable[SessionState]]) -> int:
        if self._closed:
            raise RuntimeError("tracking session is closed")
        self._release()
        self._reselect = reselect
        self._state = SessionState.RESOLVING
        self._assignment = None
        self._route = None
        self._position = None
        self._result = None
        self.stale = False
        self.error = None
        return self._generation

    async def _bind(self, gen: int, assignment: Assignment) -> None:
        self._assignment = assignment
        vehicle_id = assignment.vehicle_id

        try:
            route = await self._routes.get_route(assignment.route_id)
        except Exception:
            logger.exception("Failed to load route %s", assignment.route_id)
            route = None
        if gen != self._generation:
            return
        if route is None or not route.stops:
            self._unavailable(f"no route available for bus {vehicle_id}")
            return

        self._route = route
        self._state = SessionState.IDLE
        if assignment.stop_id is not None and route.index_of(assignment.stop_id) == UNRESOLVED_INDEX:
            logger.warning(
                "Stop %s is not on route %s; tracking bus %s without ETA",
                assignment.stop_id, route.id, vehicle_id,
            )

        fetched = True
        try:
            last = await asyncio.wait_for(
                self._positions.get_last_position(vehicle_id),
                timeout=self._last_position_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Last known position for bus %s timed out after %.1fs",
                vehicle_id, self._last_position_timeout,
            )
            last, fetched = None, False
        except Exception:
            logger.exception("Failed to fetch last known position for bus %s", vehicle_id)
            last, fetched = None, False
        if gen != self._generation:
            return
        if last is not None:
            self._accept(last)

        try:
            handle = self._events.subscribe(
                vehicle_id,
                functools.partial(self._on_position, gen),
                functools.partial(self._on_error, gen),
            )
        except Exception as exc:
            logger.exception("Failed to subscribe to positions of bus %s", vehicle_id)
            self._fault(SubscriptionFault(str(exc) or type(exc).__name__))
            return
        if gen != self._generation:
            # Released while subscribing (fault, close or a newer selection)
            handle.close()
            return
        self._subscription = handle
        if fetched:
            self._state = SessionState.TRACKING
        logger.info(
            "Tracking bus %s on route %s (%d stops, target stop %s)",
            vehicle_id, route.id, len(route.stops), assignment.stop_id,
        )

    def _on_position(self, gen: int, position: VehiclePosition) -> None:
        if gen != self._generation or self._closed:
            return
        if self._accept(position) and self._state is SessionState.IDLE:
            self._state = SessionState.TRACKING

    def _on_error(self, gen: int, exc: Exception) -> None:
        if gen != self._generation or self._closed:
            return
        fault = exc if isinstance(exc, SubscriptionFault) else SubscriptionFault(str(exc) or type(exc).__name__)
        self._fault(fault)

    def _accept(self, position: VehiclePosition) -> bool:
        try:
            result = self.recompute(position)
        except InvalidSample as e:
            logger.debug("Dropping sample: %s", e)
            return False
        self._position = position
        self._result = result
        self.stale = False
        self._emit()
        return True

    def _fault(self, fault: SubscriptionFault) -> None:
        vehicle_id = self._assignment.vehicle_id if self._assignment else None
        logger.warning("Live positions for bus %s failed: %s", vehicle_id, fault)
        self._release()
        self.error = fault
        self.stale = True
        self._emit()

    def _unavailable(self, reason: str) -> None:
        logger.warning("Tracking data unavailable: %s", reason)
        self.error = DataUnavailable(reason)
        self._emit()

    def _release(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            handle, self._subscription = self._subscription, None
            try:
                handle.close()
            except Exception:
                logger.exception("Failed to close position subscription")

    def _emit(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self)
        except Exception:
            logger.exception("Tracking update callback failed")
