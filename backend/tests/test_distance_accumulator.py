"""Tests for remaining distance along a route."""

import pytest

from bus_eta.core.distance_accumulator import remaining_distance_km, route_length_km
from bus_eta.core.entities import UNRESOLVED_INDEX, Stop
from bus_eta.core.geo import Coordinate, distance_km


def make_stops() -> list[Stop]:
    return [
        Stop(id="a", coordinate=Coordinate(12.900, 77.600), order=0),
        Stop(id="b", coordinate=Coordinate(12.904, 77.600), order=1),
        Stop(id="c", coordinate=Coordinate(12.908, 77.604), order=2),
        Stop(id="d", coordinate=Coordinate(12.912, 77.604), order=3),
    ]


def leg(stops, i):
    return distance_km(stops[i].coordinate, stops[i + 1].coordinate)


def test_same_index_is_zero():
    stops = make_stops()
    for i in range(len(stops)):
        assert remaining_distance_km(stops, i, i) == 0.0


def test_past_target_is_zero():
    stops = make_stops()
    assert remaining_distance_km(stops, 3, 1) == 0.0
    assert remaining_distance_km(stops, 2, 0) == 0.0


def test_full_route_is_sum_of_legs():
    stops = make_stops()
    expected = sum(leg(stops, i) for i in range(len(stops) - 1))
    assert remaining_distance_km(stops, 0, len(stops) - 1) == pytest.approx(expected)
    assert route_length_km(stops) == pytest.approx(expected)


def test_partial_route():
    stops = make_stops()
    assert remaining_distance_km(stops, 1, 3) == pytest.approx(leg(stops, 1) + leg(stops, 2))


def test_target_beyond_route_is_clamped():
    stops = make_stops()
    assert remaining_distance_km(stops, 0, 99) == pytest.approx(route_length_km(stops))


def test_unresolved_target_runs_to_end():
    stops = make_stops()
    assert remaining_distance_km(stops, 1, UNRESOLVED_INDEX) == pytest.approx(
        leg(stops, 1) + leg(stops, 2)
    )


def test_short_routes_are_zero():
    stop = Stop(id="a", coordinate=Coordinate(12.9, 77.6), order=0)
    assert remaining_distance_km([], 0, 0) == 0.0
    assert remaining_distance_km([stop], 0, 0) == 0.0
    assert route_length_km([]) == 0.0
