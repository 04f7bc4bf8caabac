"""
Boolean merge engine (union / difference) on revealed geometry.

Coordinates are treated as planar (lon = x, lat = y). Reveal discs span about a tenth
of a mile, where the spherical distortion of that shortcut is negligible; it is still an
approximation and not a geodesic union. Clipping is done by GEOS through shapely.

Degenerate-input policy:
- Inputs are repaired with `make_valid` before clipping (self-intersections, repeated
  points, collapsed rings). Only polygonal parts of the repaired shape are kept; lines and
  points left over from a collapse are dropped, as are parts below `MIN_PART_AREA`.
- If an input has no polygonal area left after repair, or GEOS fails, the operation raises
  `GeometryMergeError`. Nothing here mutates its inputs, so a caller that catches the error
  still holds its previous geometry.
- Longitudes are never wrapped: a disc straddling the anti-meridian is clipped as a shape
  extending past +/-180.
"""

from __future__ import annotations

import logging
from typing import Iterable, Union

from shapely.errors import GEOSException
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.ops import unary_union
from shapely.validation import make_valid

from fogmap.core.errors import GeometryMergeError
from fogmap.core.geo import Ring
from fogmap.geometry.shapes import (
    Geometry,
    MultiPolygonGeometry,
    PolygonGeometry,
    PolygonRings,
    RevealedGeometry,
    geometry_from_polygons,
    polygons_of,
)

logger = logging.getLogger(__name__)

# Squared degrees. A 0.1-mile disc covers roughly 6.6e-6; anything under this is float debris.
MIN_PART_AREA = 1e-14

MergeInput = Union[Geometry, RevealedGeometry, Ring]


def _as_geometry(value: MergeInput) -> Geometry:
    if isinstance(value, RevealedGeometry):
        return value.geometry
    if isinstance(value, (PolygonGeometry, MultiPolygonGeometry)):
        return value
    if isinstance(value, tuple):
        return PolygonGeometry(rings=(tuple(value),))
    raise TypeError(f"Unsupported merge input: {type(value).__name__}")


def _polygonal_parts(shape: BaseGeometry) -> list[Polygon]:
    if shape.is_empty:
        return []
    if isinstance(shape, Polygon):
        return [shape] if shape.area > MIN_PART_AREA else []
    if isinstance(shape, (MultiPolygon, GeometryCollection)):
        out: list[Polygon] = []
        for part in shape.geoms:
            out.extend(_polygonal_parts(part))
        return out
    # LineString / Point debris from collapsed rings.
    return []


def _to_shapely(geometry: Geometry) -> BaseGeometry:
    polys: list[Polygon] = []
    try:
        for rings in polygons_of(geometry):
            polys.append(Polygon(rings[0], list(rings[1:])))
    except (ValueError, GEOSException) as exc:
        raise GeometryMergeError(f"cannot build polygon: {exc}") from exc
    if len(polys) == 1:
        return polys[0]
    return MultiPolygon(polys)


def _sanitize(geometry: Geometry, *, label: str) -> BaseGeometry:
    shape = _to_shapely(geometry)
    try:
        if not shape.is_valid:
            logger.debug("Repairing invalid %s geometry", label)
            shape = make_valid(shape)
        parts = _polygonal_parts(shape)
        if not parts:
            raise GeometryMergeError(f"{label} geometry has no polygonal area")
        return parts[0] if len(parts) == 1 else unary_union(parts)
    except GEOSException as exc:
        raise GeometryMergeError(f"cannot repair {label} geometry: {exc}") from exc


def _ring_coords(coords: Iterable[tuple[float, ...]]) -> Ring:
    return tuple((float(c[0]), float(c[1])) for c in coords)


def _from_shapely(shape: BaseGeometry) -> Geometry | None:
    polygons: list[PolygonRings] = []
    for part in _polygonal_parts(shape):
        oriented = orient(part, sign=1.0)
        rings = [_ring_coords(oriented.exterior.coords)]
        rings.extend(_ring_coords(hole.coords) for hole in oriented.interiors)
        polygons.append(tuple(rings))
    return geometry_from_polygons(polygons)


def union(a: Geometry | RevealedGeometry | None, b: MergeInput) -> Geometry:
    """Planar union of `a` and `b`.

    When `a` is None (first point), `b` is returned as-is. `b` may be a bare disc ring.

    Raises:
        GeometryMergeError: On inputs without polygonal area or a GEOS failure.
    """
    b_geom = _as_geometry(b)
    if a is None:
        return b_geom
    a_geom = _as_geometry(a)

    a_shape = _sanitize(a_geom, label="base")
    b_shape = _sanitize(b_geom, label="incoming")
    try:
        merged = unary_union([a_shape, b_shape])
    except GEOSException as exc:
        raise GeometryMergeError(f"union failed: {exc}") from exc

    result = _from_shapely(merged)
    if result is None:
        raise GeometryMergeError("union produced an empty geometry")
    return result


def union_all(items: Iterable[Geometry | RevealedGeometry | None]) -> Geometry | None:
    """Union of every non-None item; None when there is nothing to combine."""
    present = [_as_geometry(i) for i in items if i is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    shapes = [_sanitize(g, label="operand") for g in present]
    try:
        merged = unary_union(shapes)
    except GEOSException as exc:
        raise GeometryMergeError(f"union failed: {exc}") from exc
    return _from_shapely(merged)


def difference(
    minuend: Geometry | RevealedGeometry | None,
    subtrahend: Geometry | RevealedGeometry | None,
) -> Geometry | None:
    """Planar `minuend - subtrahend`; None when nothing is left.

    Raises:
        GeometryMergeError: On inputs without polygonal area or a GEOS failure.
    """
    if minuend is None:
        return None
    m_geom = _as_geometry(minuend)
    if subtrahend is None:
        return m_geom

    m_shape = _sanitize(m_geom, label="minuend")
    s_shape = _sanitize(_as_geometry(subtrahend), label="subtrahend")
    try:
        remaining = m_shape.difference(s_shape)
    except GEOSException as exc:
        raise GeometryMergeError(f"difference failed: {exc}") from exc
    return _from_shapely(remaining)


def area(geometry: Geometry | RevealedGeometry | None) -> float:
    """Planar area in squared degrees (0.0 for None)."""
    if geometry is None:
        return 0.0
    return float(_sanitize(_as_geometry(geometry), label="measured").area)
