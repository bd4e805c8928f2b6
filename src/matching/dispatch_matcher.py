"""Nearest-driver selection for ride requests."""

from collections.abc import Callable, Collection
from typing import Literal

from sqlalchemy.orm import Session

from core.exceptions import NoDriverAvailableError
from geo.distance import Coordinate, haversine_distance_km, planar_distance_deg

from .driver_registry import DriverRegistry

DistanceMetric = Literal["haversine", "planar"]

_METRICS: dict[str, Callable[[float, float, float, float], float]] = {
    "haversine": haversine_distance_km,
    "planar": planar_distance_deg,
}


class DispatchMatcher:
    """Ranks available drivers by distance to a pickup point.

    A pure query over the registry's candidate list: nothing is claimed or
    written here. Candidates arrive ordered by driver id and the sort is
    stable, so equal distances resolve to the lowest driver id.
    """

    def __init__(self, registry: DriverRegistry, metric: DistanceMetric = "haversine") -> None:
        if metric not in _METRICS:
            raise ValueError(f"Unknown distance metric: {metric}")
        self._registry = registry
        self._metric = metric
        self._distance = _METRICS[metric]

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    def rank(
        self,
        pickup: Coordinate,
        exclude: Collection[str] = (),
        session: Session | None = None,
    ) -> list[tuple[str, float]]:
        """All eligible drivers as (driver_id, distance), nearest first."""
        ranked = [
            (candidate.driver_id, self._distance(pickup.lat, pickup.lon, *candidate.location))
            for candidate in self._registry.list_available(session)
            if candidate.driver_id not in exclude
        ]
        ranked.sort(key=lambda item: item[1])
        return ranked

    def find_nearest(
        self,
        pickup: Coordinate,
        exclude: Collection[str] = (),
        session: Session | None = None,
    ) -> str:
        """Driver id of the nearest eligible driver.

        Raises:
            NoDriverAvailableError: If no driver is eligible
        """
        best_id: str | None = None
        best_distance = float("inf")
        for candidate in self._registry.list_available(session):
            if candidate.driver_id in exclude:
                continue
            distance = self._distance(pickup.lat, pickup.lon, *candidate.location)
            if distance < best_distance:
                best_id = candidate.driver_id
                best_distance = distance

        if best_id is None:
            raise NoDriverAvailableError(
                "No drivers nearby, try again",
                {"pickup": pickup.as_tuple(), "excluded": sorted(exclude)},
            )
        return best_id
