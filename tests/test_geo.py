"""Tests for distance, geohash and the radius policy."""

import pytest

from cirql.services.geo import EARTH_RADIUS_METERS, distance_meters, geohash
from cirql.services.proximity import check_proximity, is_within_radius

POINTS = [
    (40.0, -73.0),
    (40.0, -73.0009),
    (40.01, -73.0),
    (-33.8688, 151.2093),
    (51.5074, -0.1278),
    (0.0, 179.9),
    (0.0, -179.9),
]


class TestDistance:
    """Haversine distance."""

    @pytest.mark.parametrize("a", POINTS)
    @pytest.mark.parametrize("b", POINTS)
    def test_symmetry(self, a, b):
        """Distance is the same in both directions."""
        assert distance_meters(*a, *b) == pytest.approx(distance_meters(*b, *a))

    @pytest.mark.parametrize("p", POINTS)
    def test_zero_distance(self, p):
        """A point is zero meters from itself."""
        assert distance_meters(*p, *p) == 0

    def test_one_degree_on_equator(self):
        """One degree of longitude on the equator is R * pi / 180."""
        expected = EARTH_RADIUS_METERS * 3.141592653589793 / 180
        assert distance_meters(0, 0, 0, 1) == pytest.approx(expected, rel=1e-9)

    def test_short_hop_east(self):
        """0.0009 degrees of longitude at 40N is about 77 meters."""
        assert distance_meters(40.0, -73.0, 40.0, -73.0009) == pytest.approx(76.7, abs=0.5)

    def test_one_hundredth_degree_north(self):
        """0.01 degrees of latitude is about 1.1 km."""
        assert distance_meters(40.0, -73.0, 40.01, -73.0) == pytest.approx(1111.9, abs=1)

    def test_across_antimeridian(self):
        """Points either side of 180 degrees are close, not half a world apart."""
        assert distance_meters(0.0, 179.9, 0.0, -179.9) == pytest.approx(22239, abs=5)


class TestGeohash:
    """Binary subdivision locality tag."""

    def test_known_value(self):
        """Origin used in the scenarios hashes to a fixed bitstring."""
        assert geohash(40.0, -73.0, 4) == "10011010"

    def test_length_is_two_bits_per_round(self):
        """Each precision round adds one lat and one lng bit."""
        assert len(geohash(12.3, 45.6, 4)) == 8
        assert len(geohash(12.3, 45.6, 10)) == 20

    def test_coarser_hash_is_prefix(self):
        """A lower precision hash is a prefix of a higher one."""
        assert geohash(51.5074, -0.1278, 8).startswith(geohash(51.5074, -0.1278, 3))

    def test_only_bits(self):
        """Output is a bitstring."""
        assert set(geohash(-33.8688, 151.2093)) <= {"0", "1"}


class TestProximityPolicy:
    """Inclusive radius check."""

    def test_boundary_is_inclusive(self):
        """Exactly at the radius counts as within."""
        d = distance_meters(40.0, -73.0009, 40.0, -73.0)
        assert is_within_radius(40.0, -73.0009, 40.0, -73.0, d) is True

    def test_just_outside(self):
        """A hair beyond the radius is outside."""
        d = distance_meters(40.0, -73.0009, 40.0, -73.0)
        assert is_within_radius(40.0, -73.0009, 40.0, -73.0, d - 1e-6) is False

    @pytest.mark.parametrize("user", POINTS)
    def test_matches_distance(self, user):
        """Result agrees with distance <= radius for every point."""
        d = distance_meters(*user, 40.0, -73.0)
        assert is_within_radius(*user, 40.0, -73.0, 100) is (d <= 100)

    def test_default_radius_is_100m(self):
        """Default radius accepts ~77m and rejects ~1.1km."""
        assert is_within_radius(40.0, -73.0009, 40.0, -73.0)
        assert not is_within_radius(40.01, -73.0, 40.0, -73.0)

    def test_check_reports_distance(self):
        """check_proximity carries the measured distance and radius."""
        check = check_proximity(40.01, -73.0, 40.0, -73.0, 100)

        assert check.within is False
        assert check.radius_meters == 100
        assert check.distance_meters == pytest.approx(1111.9, abs=1)
