"""
Location tracking session.

`LocationRecorder` is the fix -> significance filter -> store pipeline; it owns the
"last recorded" cursor for one session. `LocationTracker` drives it from a
`LocationSource` (the platform location layer) and keeps the state a renderer pulls:
current location, permission state, last error, manual offset.

Live fixes are recorded non-blocking: if a merge is already in flight the fix is dropped
and the next fix gets evaluated instead. Manual offset nudges are queued on a
`TaskSupervisor` so their failures surface in logs and `supervisor.failures`.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

from fogmap.config.settings import Settings
from fogmap.core.errors import FogMapError, LocationUnavailableError, PermissionDeniedError
from fogmap.core.geo import GeoPoint, meters_to_degrees_lat, meters_to_degrees_lon
from fogmap.domain.models import LocationFix
from fogmap.storage.store import GeometryStore
from fogmap.tracking.significance import LastPointFilter, NeighborhoodFilter, SignificanceFilter
from fogmap.tracking.supervisor import TaskSupervisor

logger = logging.getLogger(__name__)

Direction = Literal["north", "south", "east", "west"]


@dataclass(frozen=True)
class PermissionStatus:
    foreground: bool
    background: bool = False


class LocationSource(Protocol):
    def request_permissions(self) -> PermissionStatus: ...

    def get_current_fix(self) -> LocationFix: ...

    def subscribe(
        self,
        callback: Callable[[LocationFix], None],
        *,
        distance_interval_m: float,
        time_interval_ms: int,
    ) -> Callable[[], None]: ...


class LocationRecorder:
    """Significance-gated recording of personal points for one session."""

    def __init__(self, store: GeometryStore, significance: SignificanceFilter):
        self._store = store
        self._significance = significance
        self._lock = threading.Lock()

    @classmethod
    def for_settings(cls, store: GeometryStore, settings: Settings) -> "LocationRecorder":
        if settings.significance.strategy == "neighborhood":
            return cls(store, NeighborhoodFilter(store))
        # The cursor resumes from the newest personal history row.
        return cls(store, LastPointFilter(store.last_visited_point()))

    @property
    def significance(self) -> SignificanceFilter:
        return self._significance

    def record(
        self, latitude: float, longitude: float, *, min_distance_miles: float, blocking: bool = True
    ) -> bool:
        """Record the point if it is significant; returns True when it was merged."""
        if not self._lock.acquire(blocking=blocking):
            logger.debug("Recording already in flight; dropping fix")
            return False
        try:
            point = GeoPoint(lat=float(latitude), lon=float(longitude))
            if not self._significance.is_significant(point, min_distance_miles):
                return False
            accepted = self._store.add_visited_location(point.lat, point.lon, blocking=blocking)
            if accepted:
                self._significance.record_as_last(point)
            return accepted
        finally:
            self._lock.release()


class LocationTracker:
    def __init__(
        self,
        source: LocationSource,
        store: GeometryStore,
        settings: Settings,
        *,
        recorder: LocationRecorder | None = None,
        supervisor: TaskSupervisor | None = None,
    ):
        self._source = source
        self._settings = settings
        self._recorder = recorder or LocationRecorder.for_settings(store, settings)
        self._supervisor = supervisor or TaskSupervisor(
            max_workers=settings.tracking.supervisor_workers, name="fogmap-offset"
        )
        self._unsubscribe: Callable[[], None] | None = None
        self._lock = threading.Lock()
        self._base: GeoPoint | None = None
        self._offset = GeoPoint(lat=0.0, lon=0.0)

        self.current_location: GeoPoint | None = None
        self.has_permission: bool | None = None
        self.error_message: str | None = None

    @property
    def is_tracking(self) -> bool:
        return self._unsubscribe is not None

    @property
    def offset(self) -> GeoPoint:
        return self._offset

    @property
    def recorder(self) -> LocationRecorder:
        return self._recorder

    @property
    def supervisor(self) -> TaskSupervisor:
        return self._supervisor

    def _deny(self, message: str) -> None:
        self.has_permission = False
        self.error_message = message
        logger.warning(message)

    def start(self) -> bool:
        """Request permissions, record the current fix and subscribe; True when tracking."""
        if self.is_tracking:
            return True

        try:
            status = self._source.request_permissions()
        except PermissionDeniedError as exc:
            self._deny(f"Permission to access location was denied: {exc}")
            return False
        if not status.foreground:
            self._deny("Permission to access location was denied")
            return False
        if not status.background:
            logger.info("Background location permission denied, using foreground only")
        self.has_permission = True

        tracking = self._settings.tracking
        try:
            self.handle_fix(self._source.get_current_fix())
            self._unsubscribe = self._source.subscribe(
                self.handle_fix,
                distance_interval_m=tracking.distance_interval_m,
                time_interval_ms=tracking.time_interval_ms,
            )
        except PermissionDeniedError as exc:
            self._deny(f"Permission to access location was denied: {exc}")
            return False
        except LocationUnavailableError as exc:
            self.error_message = f"Error starting location tracking: {exc}"
            logger.warning(self.error_message)
            return False

        self.error_message = None
        return True

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        self.stop()
        self._supervisor.shutdown(wait=True)

    def _apply_offset(self, base: GeoPoint) -> GeoPoint:
        return GeoPoint(lat=base.lat + self._offset.lat, lon=base.lon + self._offset.lon)

    def handle_fix(self, fix: LocationFix) -> bool:
        """Apply the offset, update current location and try to record; True when merged."""
        with self._lock:
            self._base = GeoPoint(lat=fix.latitude, lon=fix.longitude)
            adjusted = self._apply_offset(self._base)
            self.current_location = adjusted

        max_accuracy = self._settings.tracking.max_accuracy_m
        if max_accuracy is not None and fix.accuracy is not None and fix.accuracy > max_accuracy:
            logger.debug("Skipping fix with accuracy %.1fm (limit %.1fm)", fix.accuracy, max_accuracy)
            return False

        try:
            return self._recorder.record(
                adjusted.lat,
                adjusted.lon,
                min_distance_miles=self._settings.significance.live_min_distance_miles,
                blocking=False,
            )
        except FogMapError:
            logger.exception("Error handling location update")
            return False

    def adjust_offset(self, direction: Direction, meters: float | None = None) -> Future | None:
        """Nudge the reported location and queue recording of the nudged point."""
        step = float(meters if meters is not None else self._settings.tracking.offset_step_m)
        with self._lock:
            base = self._base or self.current_location
            if base is None:
                logger.warning("No location available to offset from")
                return None

            dlat = 0.0
            dlon = 0.0
            if direction == "north":
                dlat = meters_to_degrees_lat(step)
            elif direction == "south":
                dlat = -meters_to_degrees_lat(step)
            elif direction == "east":
                dlon = meters_to_degrees_lon(step, base.lat)
            elif direction == "west":
                dlon = -meters_to_degrees_lon(step, base.lat)
            else:
                raise ValueError(f"Unknown direction: {direction!r}")

            self._offset = GeoPoint(lat=self._offset.lat + dlat, lon=self._offset.lon + dlon)
            target = self._apply_offset(base)
            self.current_location = target

        return self._supervisor.submit(
            "offset-record",
            self._recorder.record,
            target.lat,
            target.lon,
            min_distance_miles=self._settings.significance.manual_min_distance_miles,
        )

    def reset_offset(self) -> None:
        with self._lock:
            self._offset = GeoPoint(lat=0.0, lon=0.0)
            if self._base is not None:
                self.current_location = self._base
