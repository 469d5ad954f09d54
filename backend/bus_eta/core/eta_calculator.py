"""Estimate minutes to arrival from remaining distance and observed speed."""

import logging
import math

logger = logging.getLogger(__name__)

# Below this speed (km/h) the reading is treated as stale or stationary
MIN_VALID_SPEED_KMH = 5.0
# Speed assumed when the observed one is missing or below MIN_VALID_SPEED_KMH
FALLBACK_SPEED_KMH = 25.0


class EtaCalculator:
    """Speed-based ETA with a fallback floor for stationary buses."""

    def __init__(
        self,
        min_valid_speed_kmh: float = MIN_VALID_SPEED_KMH,
        fallback_speed_kmh: float = FALLBACK_SPEED_KMH,
    ) -> None:
        if not fallback_speed_kmh > 0:
            raise ValueError(f"fallback_speed_kmh must be positive, got {fallback_speed_kmh}")
        if min_valid_speed_kmh < 0:
            raise ValueError(f"min_valid_speed_kmh must not be negative, got {min_valid_speed_kmh}")
        self.min_valid_speed_kmh = min_valid_speed_kmh
        self.fallback_speed_kmh = fallback_speed_kmh

    def effective_speed(self, observed_speed_kmh: float | None) -> float:
        if (
            observed_speed_kmh is None
            or not math.isfinite(observed_speed_kmh)
            or observed_speed_kmh < self.min_valid_speed_kmh
            or observed_speed_kmh <= 0
        ):
            return self.fallback_speed_kmh
        return observed_speed_kmh

    def estimate(self, remaining_km: float, observed_speed_kmh: float | None) -> int:
        """Whole minutes to cover remaining_km, halves rounded up.

        Any positive distance is at least 1 minute; 0 km is 0 minutes.
        """
        if not remaining_km > 0:
            return 0
        speed = self.effective_speed(observed_speed_kmh)
        minutes = remaining_km / speed * 60
        # A bus that has not arrived is never shown as 0 minutes away
        return max(1, int(math.floor(minutes + 0.5)))
