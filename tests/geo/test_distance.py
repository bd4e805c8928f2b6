import pytest

from geo.distance import (
    Coordinate,
    haversine_distance_km,
    haversine_distance_m,
    planar_distance_deg,
)
from tests.factories import PICKUP, north_of


@pytest.mark.unit
class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance_m(-1.9441, 30.0619, -1.9441, 30.0619) == 0

    def test_one_degree_latitude(self):
        """One degree of latitude is about 111.195 km on the mean-radius sphere."""
        assert haversine_distance_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, abs=0.01)

    def test_symmetric(self):
        a = haversine_distance_km(-1.9441, 30.0619, -1.9706, 30.1044)
        b = haversine_distance_km(-1.9706, 30.1044, -1.9441, 30.0619)
        assert a == pytest.approx(b)

    def test_north_of_helper(self):
        point = north_of(PICKUP, 1.2)
        assert haversine_distance_km(*PICKUP.as_tuple(), *point.as_tuple()) == pytest.approx(
            1.2, abs=0.001
        )

    def test_km_is_m_over_thousand(self):
        m = haversine_distance_m(-1.95, 30.05, -1.90, 30.10)
        km = haversine_distance_km(-1.95, 30.05, -1.90, 30.10)
        assert km == pytest.approx(m / 1000)


@pytest.mark.unit
class TestPlanar:
    def test_pythagorean(self):
        assert planar_distance_deg(0.0, 0.0, 3.0, 4.0) == pytest.approx(5.0)


@pytest.mark.unit
class TestCoordinate:
    def test_as_tuple(self):
        assert Coordinate(lat=1.5, lon=2.5).as_tuple() == (1.5, 2.5)

    @pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (-91.0, 0.0), (0.0, 181.0)])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(ValueError):
            Coordinate(lat=lat, lon=lon)
