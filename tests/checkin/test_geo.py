"""Tests for haversine distance and coordinate validation."""

from __future__ import annotations

import math

import pytest

from checkin.geo import EARTH_RADIUS_METERS, Coordinates, distance_meters


def test_same_point_is_zero():
    assert distance_meters(-23.5505, -46.6333, -23.5505, -46.6333) == 0.0


def test_one_degree_of_longitude_on_the_equator():
    expected = EARTH_RADIUS_METERS * math.radians(1)
    assert distance_meters(0.0, 0.0, 0.0, 1.0) == pytest.approx(expected, abs=1e-6)


def test_distance_is_symmetric():
    there = distance_meters(-23.5505, -46.6333, -22.9068, -43.1729)
    back = distance_meters(-22.9068, -43.1729, -23.5505, -46.6333)
    assert there == pytest.approx(back)
    # Sao Paulo to Rio de Janeiro is roughly 360 km.
    assert 350_000 < there < 370_000


def test_antipodal_points_are_half_the_circumference():
    assert distance_meters(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_METERS)


def test_poles_and_date_line_are_accepted():
    assert distance_meters(90.0, 0.0, -90.0, 0.0) == pytest.approx(math.pi * EARTH_RADIUS_METERS)
    assert distance_meters(0.0, 179.9, 0.0, -179.9) == pytest.approx(
        EARTH_RADIUS_METERS * math.radians(0.2), rel=1e-6
    )


@pytest.mark.parametrize(
    "args",
    [
        (90.01, 0.0, 0.0, 0.0),
        (0.0, 0.0, -91.0, 0.0),
        (0.0, 180.5, 0.0, 0.0),
        (0.0, 0.0, 0.0, -181.0),
        (math.nan, 0.0, 0.0, 0.0),
        (0.0, math.inf, 0.0, 0.0),
    ],
)
def test_invalid_coordinates_raise_value_error(args):
    with pytest.raises(ValueError):
        distance_meters(*args)


def test_coordinates_validate_on_construction():
    with pytest.raises(ValueError):
        Coordinates(120.0, 0.0)
    with pytest.raises(ValueError):
        Coordinates(0.0, 0.0, accuracy=-1.0)


def test_coordinates_distance_to():
    school = Coordinates(-23.5505, -46.6333)
    nearby = Coordinates(-23.5505, -46.6333, accuracy=12.0)
    assert school.distance_to(nearby) == 0.0
