"""Tests for EtaCalculator (speed-based with fallback)."""

import pytest

from bus_eta.core.eta_calculator import EtaCalculator


def test_zero_distance_is_zero_minutes():
    calc = EtaCalculator()
    for speed in [None, 0, 3, 40, float("nan")]:
        assert calc.estimate(0, speed) == 0


def test_zero_speed_uses_fallback():
    calc = EtaCalculator()
    assert calc.estimate(25, 0) == 60


def test_speed_below_floor_uses_fallback():
    calc = EtaCalculator()
    assert calc.estimate(10, 3) == 24


def test_missing_or_bad_speed_uses_fallback():
    calc = EtaCalculator()
    assert calc.estimate(25, None) == 60
    assert calc.estimate(25, float("inf")) == 60
    assert calc.estimate(25, -10) == 60


def test_observed_speed_used_when_valid():
    calc = EtaCalculator()
    # 10 km at 40 km/h = 15 min
    assert calc.estimate(10, 40) == 15
    # Exactly at the floor counts as valid: 1 km at 5 km/h = 12 min
    assert calc.estimate(1, 5) == 12


def test_rounds_to_nearest_minute():
    calc = EtaCalculator()
    # 2.6 min and 2.4 min at 30 km/h
    assert calc.estimate(1.3, 30) == 3
    assert calc.estimate(1.2, 30) == 2


def test_short_distance_is_at_least_one_minute():
    calc = EtaCalculator()
    assert calc.estimate(0.05, 40) == 1


def test_custom_speeds():
    calc = EtaCalculator(min_valid_speed_kmh=10, fallback_speed_kmh=20)
    assert calc.estimate(10, 8) == 30
    assert calc.estimate(10, 60) == 10


def test_invalid_configuration():
    with pytest.raises(ValueError):
        EtaCalculator(fallback_speed_kmh=0)
    with pytest.raises(ValueError):
        EtaCalculator(min_valid_speed_kmh=-1)
