"""
Export/import codec for sharing location history with peers.

Wire format (UTF-8 JSON):

    {"version": 1, "locations": [{"lat": 37.7749, "lon": -122.4194, "ts": 1700000000000}, ...]}

Only personally visited points (`source = 'self'`) are exported, oldest first. Imports
skip any (lat, lon, ts) tuple already present in history, so replaying the same payload
imports nothing the second time. A payload that cannot be parsed at all is rejected as a
whole; each accepted point is committed on its own.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable

from pydantic import ValidationError

from fogmap.core.errors import MalformedExportDataError
from fogmap.domain.models import EXPORT_FORMAT_VERSION, ExportableLocation, LocationExportData
from fogmap.storage.store import GeometryStore

logger = logging.getLogger(__name__)


def export_history(store: GeometryStore) -> LocationExportData:
    """Project the personal history into a versioned export record."""
    records = store.history(source="self")
    return LocationExportData(
        version=EXPORT_FORMAT_VERSION,
        locations=tuple(
            ExportableLocation(lat=r.latitude, lon=r.longitude, ts=r.timestamp) for r in records
        ),
    )


def encode_export(data: LocationExportData) -> str:
    """Compact JSON text for transport."""
    payload = {
        "version": int(data.version),
        "locations": [{"lat": loc.lat, "lon": loc.lon, "ts": loc.ts} for loc in data.locations],
    }
    return json.dumps(payload, separators=(",", ":"))


def decode_export(raw: str | bytes) -> LocationExportData:
    """Parse and validate an untrusted peer payload.

    Raises:
        MalformedExportDataError: Invalid UTF-8/JSON, wrong shape, or unsupported version.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        payload = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedExportDataError(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedExportDataError("payload root must be an object")

    try:
        data = LocationExportData.model_validate(payload)
    except ValidationError as exc:
        raise MalformedExportDataError(f"payload failed validation: {exc.error_count()} error(s)") from exc

    if data.version != EXPORT_FORMAT_VERSION:
        raise MalformedExportDataError(f"unsupported export version {data.version}")
    return data


def import_shared(store: GeometryStore, locations: Iterable[ExportableLocation]) -> int:
    """Merge a peer's points into the shared geometry; returns how many were new."""
    imported = 0
    received = 0
    for loc in locations:
        received += 1
        if store.add_shared_location(loc.lat, loc.lon, loc.ts, skip_existing=True):
            imported += 1
    logger.info("Imported %d of %d shared locations", imported, received)
    return imported
