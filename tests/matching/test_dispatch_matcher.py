"""Tests for nearest-driver selection."""

import pytest

from core.exceptions import NoDriverAvailableError
from matching.dispatch_matcher import DispatchMatcher
from tests.factories import PICKUP


@pytest.mark.unit
class TestFindNearest:
    def test_picks_closest(self, matcher, three_drivers):
        assert matcher.find_nearest(PICKUP) == "d_near"

    def test_exclusions_skip_drivers(self, matcher, three_drivers):
        assert matcher.find_nearest(PICKUP, exclude=["d_near"]) == "d_mid"
        assert matcher.find_nearest(PICKUP, exclude={"d_near", "d_mid"}) == "d_far"

    def test_no_drivers(self, matcher):
        with pytest.raises(NoDriverAvailableError, match="No drivers nearby"):
            matcher.find_nearest(PICKUP)

    def test_everyone_excluded(self, matcher, three_drivers):
        with pytest.raises(NoDriverAvailableError):
            matcher.find_nearest(PICKUP, exclude=three_drivers)

    def test_unavailable_driver_ignored(self, matcher, place_driver):
        place_driver("d_off", 0.1, available=False)
        place_driver("d_on", 2.0)
        assert matcher.find_nearest(PICKUP) == "d_on"

    def test_tie_breaks_on_lowest_driver_id(self, matcher, place_driver):
        """Equal distances resolve to the lowest driver id."""
        place_driver("d_b", 1.0)
        place_driver("d_a", 1.0)
        place_driver("d_c", 1.0)
        assert matcher.find_nearest(PICKUP) == "d_a"
        assert [d for d, _ in matcher.rank(PICKUP)] == ["d_a", "d_b", "d_c"]


@pytest.mark.unit
class TestRank:
    def test_ordered_by_distance(self, matcher, three_drivers):
        ranked = matcher.rank(PICKUP)
        assert [d for d, _ in ranked] == ["d_near", "d_mid", "d_far"]
        assert ranked[0][1] == pytest.approx(0.8, abs=0.001)
        assert ranked[2][1] == pytest.approx(3.0, abs=0.001)

    def test_planar_metric_same_order(self, registry, three_drivers):
        matcher = DispatchMatcher(registry, metric="planar")
        assert matcher.metric == "planar"
        assert [d for d, _ in matcher.rank(PICKUP)] == ["d_near", "d_mid", "d_far"]

    def test_unknown_metric(self, registry):
        with pytest.raises(ValueError, match="Unknown distance metric"):
            DispatchMatcher(registry, metric="manhattan")
