"""Detect edited routes by comparing revisions between polls."""

import logging
from collections.abc import Hashable

from bus_eta.core.ports import RouteRepository
from bus_eta.core.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class RouteWatcher:
    def __init__(self, routes: RouteRepository, registry: SessionRegistry) -> None:
        self.routes = routes
        self.registry = registry
        self._revisions: dict[str, Hashable] | None = None

    async def check(self) -> list[str]:
        """Poll route revisions and refresh sessions on routes that changed.

        The first poll only records a baseline.
        """
        try:
            revisions = await self.routes.route_revisions()
        except Exception:
            logger.exception("Failed to load route revisions")
            return []

        previous = self._revisions
        self._revisions = revisions
        if previous is None:
            logger.debug("Route watcher baseline: %d routes", len(revisions))
            return []

        changed = [
            route_id for route_id, rev in revisions.items()
            if previous.get(route_id) != rev
        ]
        changed += [route_id for route_id in previous if route_id not in revisions]
        for route_id in changed:
            await self.registry.notify_route_changed(route_id)
        return changed
