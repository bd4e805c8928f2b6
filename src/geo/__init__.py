from .distance import Coordinate, haversine_distance_km, haversine_distance_m, planar_distance_deg

__all__ = [
    "Coordinate",
    "haversine_distance_km",
    "haversine_distance_m",
    "planar_distance_deg",
]
