import pytest

from placemerge.geo import bounding_box, haversine_km, haversine_m


def test_haversine_same_point_is_zero():
    assert haversine_m(40.7128, -74.0060, 40.7128, -74.0060) == 0.0


def test_haversine_one_degree_latitude():
    # One degree of latitude is ~111.2 km on a 6371 km sphere.
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111195, rel=1e-3)
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, rel=1e-3)


def test_haversine_is_symmetric():
    a = haversine_m(52.2297, 21.0122, 50.0647, 19.9450)
    b = haversine_m(50.0647, 19.9450, 52.2297, 21.0122)
    assert a == pytest.approx(b)


def test_bounding_box_contains_radius():
    box = bounding_box(40.0, -74.0, 1110)
    assert box["lat_min"] == pytest.approx(39.99)
    assert box["lat_max"] == pytest.approx(40.01)
    assert box["lon_min"] < -74.0 < box["lon_max"]
    # Longitude span widens away from the equator.
    assert (box["lon_max"] - box["lon_min"]) > (box["lat_max"] - box["lat_min"])


def test_bounding_box_near_pole_stays_finite():
    box = bounding_box(90.0, 0.0, 1000)
    assert box["lon_max"] - box["lon_min"] < 10


def test_bounding_box_wraps_across_antimeridian():
    box = bounding_box(0.0, 179.999, 1000)
    assert box["lon_min"] == pytest.approx(179.999 - 1000 / 111000)
    assert box["lon_max"] == pytest.approx(-180.0 + (179.999 + 1000 / 111000 - 180.0))
    assert box["lon_min"] > box["lon_max"]


def test_bounding_box_covering_every_longitude():
    box = bounding_box(89.999, 10.0, 500000)
    assert (box["lon_min"], box["lon_max"]) == (-180.0, 180.0)
