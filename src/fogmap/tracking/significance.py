"""
Significance filtering for incoming fixes.

Merging a disc costs a full polygon union, so fixes that land too close to points we
already revealed are skipped. Two strategies are available:

- `LastPointFilter`: compare only against the most recently accepted point (O(1)).
  Each tracking session owns its own cursor.
- `NeighborhoodFilter`: compare against every stored point inside a bounding box padded
  by the threshold, then confirm with the true haversine distance. Correct against the
  whole history; cost grows with local point density.
"""

from __future__ import annotations

import logging
from typing import Protocol

from fogmap.core.geo import GeoPoint, bounding_box, haversine_miles

logger = logging.getLogger(__name__)

DEFAULT_LIVE_MIN_DISTANCE_MILES = 0.02
DEFAULT_MANUAL_MIN_DISTANCE_MILES = 0.005


class SignificanceFilter(Protocol):
    def is_significant(self, candidate: GeoPoint, min_distance_miles: float) -> bool: ...

    def record_as_last(self, candidate: GeoPoint) -> None: ...


class HistoryIndex(Protocol):
    def points_within(
        self, *, min_lat: float, min_lon: float, max_lat: float, max_lon: float
    ) -> list[GeoPoint]: ...


class LastPointFilter:
    """Accept a point when it is at least `min_distance_miles` from the last accepted one."""

    def __init__(self, last: GeoPoint | None = None):
        self._last = last

    @property
    def last(self) -> GeoPoint | None:
        return self._last

    def is_significant(self, candidate: GeoPoint, min_distance_miles: float) -> bool:
        if self._last is None:
            return True
        return haversine_miles(candidate, self._last) >= float(min_distance_miles)

    def record_as_last(self, candidate: GeoPoint) -> None:
        self._last = candidate

    def reset(self) -> None:
        self._last = None


class NeighborhoodFilter:
    """Accept a point when no stored point lies within `min_distance_miles` of it."""

    def __init__(self, index: HistoryIndex):
        self._index = index

    def is_significant(self, candidate: GeoPoint, min_distance_miles: float) -> bool:
        threshold = float(min_distance_miles)
        if threshold <= 0:
            return True
        min_lat, min_lon, max_lat, max_lon = bounding_box(candidate, threshold)
        neighbors = self._index.points_within(
            min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon
        )
        for p in neighbors:
            if haversine_miles(candidate, p) < threshold:
                return False
        logger.debug("No neighbor within %.4f mi among %d candidates", threshold, len(neighbors))
        return True

    def record_as_last(self, candidate: GeoPoint) -> None:
        # The store's history is the state here; nothing to track.
        return None

    def reset(self) -> None:
        return None
