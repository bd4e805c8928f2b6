"""Centralized geographic distance calculations.

Haversine distance is the default metric for dispatch and for the distance
a driver covers while tracked. Planar distance reproduces the degree-space
Euclidean comparison the mobile apps used to rank drivers; it is only
meaningful for ordering candidates around a single pickup, never as a length.
"""

from math import atan2, cos, hypot, radians, sin, sqrt

from pydantic import BaseModel, Field

EARTH_RADIUS_M = 6_371_000  # Earth radius in meters


class Coordinate(BaseModel):
    """WGS84 point."""

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


def haversine_distance_m(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in meters.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_M * c


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers."""
    return haversine_distance_m(lat1, lon1, lat2, lon2) / 1000.0


def planar_distance_deg(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Euclidean distance between two points treated as planar degree pairs."""
    return hypot(lat2 - lat1, lon2 - lon1)
