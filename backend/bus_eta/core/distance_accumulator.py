"""Stop-to-stop distance remaining along an ordered route."""

from collections.abc import Sequence

from bus_eta.core.entities import Stop
from bus_eta.core.geo import distance_km


def remaining_distance_km(stops: Sequence[Stop], from_index: int, to_index: int) -> float:
    """Sum consecutive stop distances from from_index up to to_index.

    A negative to_index (UNRESOLVED_INDEX) means no target was resolved and
    the sum runs to the last stop. The result is clamped at zero when the
    vehicle is already at or past the target.
    """
    if len(stops) < 2:
        return 0.0

    last = len(stops) - 1
    end = last if to_index < 0 else min(to_index, last)
    start = max(from_index, 0)
    if start >= end:
        return 0.0

    total = 0.0
    for i in range(start, end):
        total += distance_km(stops[i].coordinate, stops[i + 1].coordinate)
    return total


def route_length_km(stops: Sequence[Stop]) -> float:
    return remaining_distance_km(stops, 0, len(stops) - 1)
