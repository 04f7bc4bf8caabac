"""
Geometry store: owner of the `personal` and `shared` revealed geometries.

Each slot has its own lock, so live tracking (personal) and an inbound share (shared)
can merge at the same time. Operations that read both slots take the locks in a fixed
order, personal before shared.

A mutation computes the merged geometry, commits it together with its history row, and
only then swaps the in-memory snapshot. If the merge or the commit fails, the previously
committed geometry stays in place.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from fogmap.config.settings import Settings
from fogmap.core.env import resolve_project_path
from fogmap.core.errors import GeometryMergeError, UninitializedStoreError
from fogmap.core.geo import GeoPoint, make_disc
from fogmap.core.time import now_ms
from fogmap.domain.models import HistorySource, RevealedStats, VisitedLocationRecord
from fogmap.geometry import merge, shapes
from fogmap.geometry.shapes import RevealedGeometry
from fogmap.storage.database import Database, Slot

logger = logging.getLogger(__name__)

REVEAL_RADIUS_MILES = 0.1
DISC_STEPS = 32


class GeometryStore:
    """Persistent personal/shared revealed geometry plus the history log."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        radius_miles: float = REVEAL_RADIUS_MILES,
        steps: int = DISC_STEPS,
        clock: Callable[[], int] = now_ms,
    ):
        self._db = Database(db_path)
        self._radius_miles = float(radius_miles)
        self._steps = int(steps)
        self._clock = clock
        self._ready = False
        self._slots: dict[str, RevealedGeometry | None] = {"personal": None, "shared": None}
        self._locks: dict[str, threading.Lock] = {
            "personal": threading.Lock(),
            "shared": threading.Lock(),
        }

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "GeometryStore":
        db_path = settings.storage.db_path
        if db_path != ":memory:":
            db_path = str(resolve_project_path(db_path))
        return cls(
            db_path,
            radius_miles=settings.reveal.radius_miles,
            steps=settings.reveal.steps,
            **kwargs,
        )

    @property
    def radius_miles(self) -> float:
        return self._radius_miles

    @property
    def steps(self) -> int:
        return self._steps

    @property
    def is_ready(self) -> bool:
        return self._ready

    def initialize(self) -> None:
        """Open the database, run migrations and load both slots."""
        self._db.open()
        for slot in ("personal", "shared"):
            row = self._db.read_slot(slot)
            if row is None:
                self._slots[slot] = None
                continue
            self._slots[slot] = RevealedGeometry(
                geometry=shapes.loads(row.geojson),
                point_count=row.location_count,
                last_updated=row.last_updated,
            )
        self._ready = True
        logger.info(
            "Geometry store ready (%s): personal=%d shared=%d points",
            self._db.path,
            self.get_revealed_stats("personal").point_count,
            self.get_revealed_stats("shared").point_count,
        )

    def close(self) -> None:
        self._ready = False
        self._db.close()

    def _require_ready(self) -> None:
        if not self._ready:
            raise UninitializedStoreError("Geometry store used before initialize()")

    @contextmanager
    def _both_slots(self) -> Iterator[None]:
        with self._locks["personal"], self._locks["shared"]:
            yield

    # Mutations

    def add_visited_location(self, latitude: float, longitude: float, *, blocking: bool = True) -> bool:
        """Merge a disc around a personally visited point into `personal`.

        Returns False when the fix was dropped: the merge failed, or `blocking` is False and
        another merge for this slot is in flight.
        """
        ts = self._clock()
        return self._add("personal", latitude, longitude, timestamp=ts, source="self", blocking=blocking)

    def add_shared_location(
        self,
        latitude: float,
        longitude: float,
        original_timestamp: int,
        *,
        blocking: bool = True,
        skip_existing: bool = False,
    ) -> bool:
        """Merge a peer's point into `shared`, logging the peer's capture time in history.

        With `skip_existing`, a point whose (lat, lon, ts) is already in history is left out
        and False is returned. The lookup runs under the shared slot lock, so concurrent
        imports of one payload cannot both insert it.
        """
        return self._add(
            "shared",
            latitude,
            longitude,
            timestamp=int(original_timestamp),
            source="shared",
            blocking=blocking,
            skip_existing=skip_existing,
        )

    def _add(
        self,
        slot: Slot,
        latitude: float,
        longitude: float,
        *,
        timestamp: int,
        source: HistorySource,
        blocking: bool,
        skip_existing: bool = False,
    ) -> bool:
        self._require_ready()
        lock = self._locks[slot]
        if not lock.acquire(blocking=blocking):
            logger.debug("Merge already in flight for %s; dropping point", slot)
            return False
        try:
            if skip_existing and self._db.history_exists(latitude, longitude, timestamp):
                logger.debug("Skipping known %s point (%.6f, %.6f, %d)", slot, latitude, longitude, timestamp)
                return False
            current = self._slots[slot]
            disc = make_disc(GeoPoint(lat=float(latitude), lon=float(longitude)), self._radius_miles, self._steps)
            try:
                merged = merge.union(current, disc)
            except GeometryMergeError as exc:
                logger.warning("Dropping %s point (%.6f, %.6f): %s", slot, latitude, longitude, exc)
                return False

            updated = RevealedGeometry(
                geometry=merged,
                point_count=(current.point_count if current else 0) + 1,
                last_updated=self._clock(),
            )
            self._db.commit_mutation(
                slot,
                geojson=shapes.dumps(updated.geometry),
                location_count=updated.point_count,
                last_updated=updated.last_updated,
                latitude=latitude,
                longitude=longitude,
                timestamp=timestamp,
                source=source,
            )
            self._slots[slot] = updated
            return True
        finally:
            lock.release()

    def clear_all(self) -> None:
        """Delete both geometries and the whole history. Irreversible."""
        self._require_ready()
        with self._both_slots():
            self._db.clear_all()
            self._slots["personal"] = None
            self._slots["shared"] = None
        logger.info("Cleared all revealed geometry and history")

    # Reads

    def get_revealed_geometry(self) -> RevealedGeometry | None:
        self._require_ready()
        return self._slots["personal"]

    def get_shared_geometry(self) -> RevealedGeometry | None:
        self._require_ready()
        return self._slots["shared"]

    def _snapshot_both(self) -> tuple[RevealedGeometry | None, RevealedGeometry | None]:
        self._require_ready()
        with self._both_slots():
            return self._slots["personal"], self._slots["shared"]

    def get_all_revealed_geometry(self) -> RevealedGeometry | None:
        """personal ∪ shared."""
        personal, shared = self._snapshot_both()
        combined = merge.union_all([personal, shared])
        if combined is None:
            return None
        present = [g for g in (personal, shared) if g is not None]
        return RevealedGeometry(
            geometry=combined,
            point_count=sum(g.point_count for g in present),
            last_updated=max(g.last_updated for g in present),
        )

    def get_shared_only_geometry(self) -> RevealedGeometry | None:
        """shared − personal; None when personal covers all of shared."""
        personal, shared = self._snapshot_both()
        if shared is None:
            return None
        remaining = merge.difference(shared, personal)
        if remaining is None:
            return None
        return RevealedGeometry(
            geometry=remaining,
            point_count=shared.point_count,
            last_updated=shared.last_updated,
        )

    def get_revealed_stats(self, slot: Slot = "personal") -> RevealedStats:
        self._require_ready()
        current = self._slots[slot]
        if current is None:
            return RevealedStats()
        return RevealedStats(point_count=current.point_count, last_updated=current.last_updated)

    def get_location_count(self) -> int:
        return self.get_revealed_stats("personal").point_count

    # History

    def history(self, source: HistorySource | None = None) -> list[VisitedLocationRecord]:
        self._require_ready()
        return self._db.history(source)

    def has_history_point(self, latitude: float, longitude: float, timestamp: int) -> bool:
        self._require_ready()
        return self._db.history_exists(latitude, longitude, timestamp)

    def last_visited_point(self) -> GeoPoint | None:
        """Newest personal history point, or None when nothing was recorded yet."""
        self._require_ready()
        row = self._db.latest_history("self")
        return GeoPoint(lat=row[0], lon=row[1]) if row is not None else None

    def points_within(
        self, *, min_lat: float, min_lon: float, max_lat: float, max_lon: float
    ) -> list[GeoPoint]:
        self._require_ready()
        # Only personal history gates personal recording; shared points do not.
        rows = self._db.history_in_box(
            min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon, source="self"
        )
        return [GeoPoint(lat=lat, lon=lon) for lat, lon in rows]
