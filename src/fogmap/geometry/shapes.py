"""
Revealed-geometry value types.

A geometry is a tagged variant: either a `PolygonGeometry` (one outer ring plus holes)
or a `MultiPolygonGeometry` (several such polygons). Coordinates are (lon, lat) pairs,
matching GeoJSON axis order. Consumers dispatch with `isinstance` and must handle both
variants; `polygons_of()` is the common flattening used by most of them.

Ring invariants (enforced by the merge engine on every value it produces):
- every ring is closed (first point == last point),
- outer rings wind counter-clockwise, holes clockwise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from fogmap.core.geo import Ring

PolygonRings = tuple[Ring, ...]


@dataclass(frozen=True)
class PolygonGeometry:
    rings: PolygonRings


@dataclass(frozen=True)
class MultiPolygonGeometry:
    polygons: tuple[PolygonRings, ...]


Geometry = Union[PolygonGeometry, MultiPolygonGeometry]


@dataclass(frozen=True)
class RevealedGeometry:
    """A geometry plus the metadata the store keeps next to it."""

    geometry: Geometry
    point_count: int = 0
    last_updated: int = 0


def polygons_of(geometry: Geometry) -> list[PolygonRings]:
    """Flatten either variant into a list of polygons (each a tuple of rings)."""
    if isinstance(geometry, PolygonGeometry):
        return [geometry.rings]
    if isinstance(geometry, MultiPolygonGeometry):
        return list(geometry.polygons)
    raise TypeError(f"Unsupported geometry type: {type(geometry).__name__}")


def geometry_from_polygons(polygons: list[PolygonRings]) -> Geometry | None:
    """Build the narrowest variant for `polygons` (None when empty)."""
    if not polygons:
        return None
    if len(polygons) == 1:
        return PolygonGeometry(rings=polygons[0])
    return MultiPolygonGeometry(polygons=tuple(polygons))


def is_closed(ring: Ring) -> bool:
    return len(ring) >= 4 and ring[0] == ring[-1]


def signed_area(ring: Ring) -> float:
    """Shoelace area in squared degrees; positive for counter-clockwise rings."""
    total = 0.0
    for (x1, y1), (x2, y2) in zip(ring, ring[1:]):
        total += x1 * y2 - x2 * y1
    return total / 2.0


def _ring_to_json(ring: Ring) -> list[list[float]]:
    return [[float(x), float(y)] for x, y in ring]


def _ring_from_json(raw: Any) -> Ring:
    if not isinstance(raw, list):
        raise ValueError("ring must be a list of positions")
    out: list[tuple[float, float]] = []
    for pos in raw:
        if not isinstance(pos, (list, tuple)) or len(pos) < 2:
            raise ValueError("position must be [lon, lat]")
        out.append((float(pos[0]), float(pos[1])))
    return tuple(out)


def _polygon_from_json(raw: Any) -> PolygonRings:
    if not isinstance(raw, list) or not raw:
        raise ValueError("polygon must be a non-empty list of rings")
    return tuple(_ring_from_json(r) for r in raw)


def to_geojson(geometry: Geometry) -> dict[str, Any]:
    """Encode a geometry as a GeoJSON geometry object."""
    if isinstance(geometry, PolygonGeometry):
        return {"type": "Polygon", "coordinates": [_ring_to_json(r) for r in geometry.rings]}
    if isinstance(geometry, MultiPolygonGeometry):
        return {
            "type": "MultiPolygon",
            "coordinates": [[_ring_to_json(r) for r in poly] for poly in geometry.polygons],
        }
    raise TypeError(f"Unsupported geometry type: {type(geometry).__name__}")


def from_geojson(obj: dict[str, Any]) -> Geometry:
    """Decode a GeoJSON Polygon/MultiPolygon geometry (or a Feature wrapping one).

    Raises:
        ValueError: On any other type or a malformed coordinate array.
    """
    if obj.get("type") == "Feature":
        inner = obj.get("geometry")
        if not isinstance(inner, dict):
            raise ValueError("Feature has no geometry")
        obj = inner

    kind = obj.get("type")
    coords = obj.get("coordinates")
    if kind == "Polygon":
        return PolygonGeometry(rings=_polygon_from_json(coords))
    if kind == "MultiPolygon":
        if not isinstance(coords, list) or not coords:
            raise ValueError("MultiPolygon must have at least one polygon")
        return MultiPolygonGeometry(polygons=tuple(_polygon_from_json(p) for p in coords))
    raise ValueError(f"Unsupported GeoJSON type: {kind!r}")


def to_feature(revealed: RevealedGeometry) -> dict[str, Any]:
    """GeoJSON Feature with the store metadata in `properties`."""
    return {
        "type": "Feature",
        "properties": {
            "point_count": int(revealed.point_count),
            "last_updated": int(revealed.last_updated),
        },
        "geometry": to_geojson(revealed.geometry),
    }


def dumps(geometry: Geometry) -> str:
    """Compact, deterministic JSON text for persistence."""
    return json.dumps(to_geojson(geometry), separators=(",", ":"))


def loads(text: str) -> Geometry:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("geometry JSON root must be an object")
    return from_geojson(data)
