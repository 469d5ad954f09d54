"""Locate a vehicle on its route by the nearest stop.

This is a nearest-stop match, not a projection onto route segments. On a
looped or self-overlapping route a vehicle between two stops can be closer to
a stop further along the loop, so the reported index is not guaranteed to be
monotonic.
"""

from collections.abc import Sequence

from bus_eta.core.entities import Stop
from bus_eta.core.geo import Coordinate, distance_km


def nearest_index(position: Coordinate, stops: Sequence[Stop]) -> int:
    """Index of the stop closest to position; the first of equal minima wins.

    Returns 0 for an empty sequence, so callers must check for an empty route
    themselves.
    """
    best_idx = 0
    best_dist = float("inf")
    for i, stop in enumerate(stops):
        d = distance_km(position, stop.coordinate)
        if d < best_dist:
            best_dist = d
            best_idx = i
    return best_idx
