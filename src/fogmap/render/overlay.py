"""
Renderer-facing snapshots.

The map layer pulls these on its own refresh cadence; nothing here pushes. Geometries are
handed over as GeoJSON dicts so any map SDK can consume them directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fogmap.core.geo import GeoPoint, make_disc
from fogmap.domain.models import RevealedStats
from fogmap.geometry.shapes import Geometry, RevealedGeometry, polygons_of, to_feature
from fogmap.storage.store import GeometryStore

# Web-mercator safe latitude bounds; the fog covers everything inside them.
WORLD_RING: tuple[tuple[float, float], ...] = (
    (-180.0, -85.0),
    (180.0, -85.0),
    (180.0, 85.0),
    (-180.0, 85.0),
    (-180.0, -85.0),
)


def build_fog_overlay(geometry: Geometry | RevealedGeometry | None) -> dict[str, Any]:
    """World polygon with one hole per revealed outer ring (holes wound clockwise).

    Holes inside the revealed area (unvisited pockets) are not cut out of the fog, so they
    stay fogged.
    """
    if isinstance(geometry, RevealedGeometry):
        geometry = geometry.geometry
    rings: list[list[list[float]]] = [[list(p) for p in WORLD_RING]]
    if geometry is not None:
        for poly in polygons_of(geometry):
            # Stored outer rings are counter-clockwise; a hole needs the reverse.
            rings.append([[x, y] for x, y in reversed(poly[0])])
    return {"type": "Polygon", "coordinates": rings}


def current_location_disc(location: GeoPoint, radius_miles: float, steps: int = 32) -> dict[str, Any]:
    """Reveal-radius indicator around the current location."""
    return {"type": "Polygon", "coordinates": [[list(p) for p in make_disc(location, radius_miles, steps)]]}


def _feature_or_none(value: RevealedGeometry | None) -> dict[str, Any] | None:
    return to_feature(value) if value is not None else None


@dataclass
class RendererSnapshot:
    personal: dict[str, Any] | None
    shared: dict[str, Any] | None
    shared_only: dict[str, Any] | None
    all: dict[str, Any] | None
    fog: dict[str, Any]
    current_location: dict[str, Any] | None = None
    current_disc: dict[str, Any] | None = None
    stats: dict[str, RevealedStats] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "personal": self.personal,
            "shared": self.shared,
            "shared_only": self.shared_only,
            "all": self.all,
            "fog": self.fog,
            "current_location": self.current_location,
            "current_disc": self.current_disc,
            "stats": {k: v.model_dump() for k, v in self.stats.items()},
        }


def take_snapshot(store: GeometryStore, current_location: GeoPoint | None = None) -> RendererSnapshot:
    """Read every geometry the renderer draws in one call."""
    everything = store.get_all_revealed_geometry()
    current = None
    disc = None
    if current_location is not None:
        disc = current_location_disc(current_location, store.radius_miles, store.steps)
        current = {
            "type": "Feature",
            "properties": {},
            "geometry": {"type": "Point", "coordinates": [current_location.lon, current_location.lat]},
        }
    return RendererSnapshot(
        personal=_feature_or_none(store.get_revealed_geometry()),
        shared=_feature_or_none(store.get_shared_geometry()),
        shared_only=_feature_or_none(store.get_shared_only_geometry()),
        all=_feature_or_none(everything),
        fog=build_fog_overlay(everything),
        current_location=current,
        current_disc=disc,
        stats={
            "personal": store.get_revealed_stats("personal"),
            "shared": store.get_revealed_stats("shared"),
        },
    )

