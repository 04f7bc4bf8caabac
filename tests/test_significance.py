from fogmap.core.geo import GeoPoint, bounding_box
from fogmap.tracking.significance import (
    DEFAULT_LIVE_MIN_DISTANCE_MILES,
    DEFAULT_MANUAL_MIN_DISTANCE_MILES,
    LastPointFilter,
    NeighborhoodFilter,
)

# 0.0001 deg of latitude is about 0.0069 miles.
BASE = GeoPoint(lat=37.7749, lon=-122.4194)
NEAR = GeoPoint(lat=37.7750, lon=-122.4194)
FAR = GeoPoint(lat=37.7760, lon=-122.4194)


class StubIndex:
    def __init__(self, points):
        self.points = list(points)
        self.queries = []

    def points_within(self, *, min_lat, min_lon, max_lat, max_lon):
        self.queries.append((min_lat, min_lon, max_lat, max_lon))
        return [
            p for p in self.points if min_lat <= p.lat <= max_lat and min_lon <= p.lon <= max_lon
        ]


def test_last_point_filter_accepts_first_point():
    f = LastPointFilter()
    assert f.is_significant(BASE, DEFAULT_LIVE_MIN_DISTANCE_MILES) is True


def test_last_point_filter_rejects_nearby_and_accepts_far():
    f = LastPointFilter()
    f.record_as_last(BASE)

    assert f.is_significant(NEAR, DEFAULT_LIVE_MIN_DISTANCE_MILES) is False
    assert f.is_significant(FAR, DEFAULT_LIVE_MIN_DISTANCE_MILES) is True
    # The manual threshold is looser than the live one.
    assert f.is_significant(NEAR, DEFAULT_MANUAL_MIN_DISTANCE_MILES) is True


def test_last_point_filter_reset_forgets_cursor():
    f = LastPointFilter(BASE)
    f.reset()
    assert f.last is None
    assert f.is_significant(NEAR, DEFAULT_LIVE_MIN_DISTANCE_MILES) is True


def test_neighborhood_filter_checks_every_stored_point_in_box():
    # The nearest stored point is not the last one.
    index = StubIndex([BASE, GeoPoint(lat=40.0, lon=-100.0)])
    f = NeighborhoodFilter(index)

    assert f.is_significant(NEAR, DEFAULT_LIVE_MIN_DISTANCE_MILES) is False
    assert f.is_significant(FAR, DEFAULT_LIVE_MIN_DISTANCE_MILES) is True
    assert index.queries[0] == bounding_box(NEAR, DEFAULT_LIVE_MIN_DISTANCE_MILES)


def test_neighborhood_filter_accepts_everything_with_zero_threshold():
    f = NeighborhoodFilter(StubIndex([BASE]))
    assert f.is_significant(BASE, 0.0) is True
