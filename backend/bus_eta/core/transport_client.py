"""Async client for the school transport backend's bus location endpoint."""

import asyncio
import datetime
import logging

import httpx

from bus_eta.core.entities import VehiclePosition
from bus_eta.core.geo import Coordinate
from bus_eta.core.ports import PositionStore

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 2
RETRY_BACKOFF = [0.2, 0.5]  # seconds between retries
# Per-request timeout; kept well below the session's last-position deadline
DEFAULT_TIMEOUT = 2.0


def _parse_timestamp(raw) -> datetime.datetime | None:
    if not raw:
        return None
    try:
        ts = datetime.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


class TransportApiClient(PositionStore):
    """Fetches the last reported bus location over REST."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, path: str, label: str) -> httpx.Response | None:
        """GET, retrying refused connections and 5xx.

        Timeouts are not retried: the caller waits on the whole fetch with its
        own deadline.
        """
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._client.get(path)
                if resp.status_code < 500:
                    return resp
                reason = f"HTTP {resp.status_code}"
            except httpx.ConnectError as e:
                reason = type(e).__name__
            except httpx.HTTPError:
                logger.exception("Failed to fetch %s", label)
                return None
            if attempt < MAX_RETRIES:
                wait = RETRY_BACKOFF[attempt]
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.1fs",
                    label, attempt + 1, MAX_RETRIES + 1, reason, wait,
                )
                await asyncio.sleep(wait)
        logger.error("%s failed after %d attempts", label, MAX_RETRIES + 1)
        return None

    async def get_last_position(self, vehicle_id: str) -> VehiclePosition | None:
        resp = await self._get_with_retry(
            f"/transport/buses/{vehicle_id}/location", f"location of bus {vehicle_id}",
        )
        if resp is None or resp.status_code == 404:
            return None
        if resp.is_error:
            logger.error("Failed to fetch location of bus %s: HTTP %d", vehicle_id, resp.status_code)
            return None

        try:
            data = resp.json()
            if isinstance(data, dict) and "location" in data:
                data = data["location"]
            if not data:
                return None
            speed = data.get("speed")
            heading = data.get("heading")
            return VehiclePosition(
                coordinate=Coordinate(
                    float(data.get("latitude", data.get("lat"))),
                    float(data.get("longitude", data.get("lon", data.get("lng")))),
                ),
                speed_kmh=float(speed) if speed is not None else None,
                heading=float(heading) if heading is not None else None,
                timestamp=_parse_timestamp(data.get("recorded_at", data.get("timestamp"))),
            )
        except (ValueError, TypeError, AttributeError):
            logger.exception("Failed to parse location of bus %s", vehicle_id)
            return None
