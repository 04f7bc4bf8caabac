"""
Geospatial helpers.

Distances use the haversine formula on a spherical earth (radius in miles). Degree
conversions use the flat "69 miles per degree of latitude" rule with longitude scaled
by cos(latitude); that is accurate enough at reveal-disc scale (a tenth of a mile).
"""

from __future__ import annotations

from dataclasses import dataclass
from math import atan2, cos, pi, radians, sin, sqrt

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE_LAT = 69.0
METERS_PER_DEGREE_LAT = 111_320.0

# cos(89.9 deg): longitude scaling is floored here so discs near the poles stay finite.
MIN_COS_LAT = cos(radians(89.9))

Ring = tuple[tuple[float, float], ...]


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def haversine_miles(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in miles between two points."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = radians(b.lat - a.lat)
    dlon = radians(b.lon - a.lon)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * atan2(sqrt(h), sqrt(1 - h))


def _lon_scale(lat: float) -> float:
    return max(abs(cos(radians(lat))), MIN_COS_LAT)


def miles_to_degrees_lat(miles: float) -> float:
    return float(miles) / MILES_PER_DEGREE_LAT


def miles_to_degrees_lon(miles: float, lat: float) -> float:
    return miles_to_degrees_lat(miles) / _lon_scale(lat)


def meters_to_degrees_lat(meters: float) -> float:
    return float(meters) / METERS_PER_DEGREE_LAT


def meters_to_degrees_lon(meters: float, lat: float) -> float:
    return float(meters) / (METERS_PER_DEGREE_LAT * _lon_scale(lat))


def bounding_box(center: GeoPoint, radius_miles: float) -> tuple[float, float, float, float]:
    """Return (min_lat, min_lon, max_lat, max_lon) padded by `radius_miles` around `center`."""
    dlat = miles_to_degrees_lat(radius_miles)
    dlon = miles_to_degrees_lon(radius_miles, center.lat)
    return center.lat - dlat, center.lon - dlon, center.lat + dlat, center.lon + dlon


def make_disc(center: GeoPoint, radius_miles: float, steps: int = 32) -> Ring:
    """Approximate a circle of `radius_miles` around `center` as a closed (lon, lat) ring.

    The ring has `steps + 1` vertices sampled counter-clockwise over [0, 2*pi]; the last
    vertex repeats the first. Longitude radius is widened by 1/cos(lat) to compensate for
    meridian convergence; the factor is clamped near the poles instead of dividing by zero.

    Raises:
        ValueError: If `steps` is below 8 or `radius_miles` is not positive.
    """
    steps = int(steps)
    if steps < 8:
        raise ValueError("steps must be >= 8")
    if float(radius_miles) <= 0:
        raise ValueError("radius_miles must be > 0")

    dlat = miles_to_degrees_lat(radius_miles)
    dlon = miles_to_degrees_lon(radius_miles, center.lat)

    points: list[tuple[float, float]] = []
    for i in range(steps):
        angle = 2 * pi * i / steps
        lon = center.lon + dlon * cos(angle)
        lat = min(90.0, max(-90.0, center.lat + dlat * sin(angle)))
        points.append((lon, lat))
    points.append(points[0])
    return tuple(points)
