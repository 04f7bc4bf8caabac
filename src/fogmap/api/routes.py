"""
API routes.

Endpoints (pull-based; a renderer polls them on its own cadence):
- GET  `/api/health`: liveness + store readiness.
- GET  `/api/geometry/{slot}`: personal | shared | shared-only | all, as a GeoJSON Feature or null.
- GET  `/api/stats`: point counts and last-updated per slot.
- GET  `/api/fog-overlay`: world polygon with revealed areas cut out.
- GET  `/api/snapshot`: everything above in one payload.
- GET  `/api/export`: personal history as LocationExportData.
- POST `/api/locations`: record one point through the significance filter.
- POST `/api/import`: import a peer's LocationExportData as shared data.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from fogmap.config.settings import get_settings
from fogmap.core.errors import GeometryMergeError, MalformedExportDataError
from fogmap.core.geo import GeoPoint
from fogmap.geometry.shapes import RevealedGeometry, to_feature
from fogmap.render.overlay import build_fog_overlay, take_snapshot
from fogmap.sharing.codec import decode_export, export_history, import_shared
from fogmap.storage.store import GeometryStore
from fogmap.tracking.tracker import LocationRecorder

router = APIRouter()

GeometrySlot = Literal["personal", "shared", "shared-only", "all"]


@lru_cache
def get_store() -> GeometryStore:
    store = GeometryStore.from_settings(get_settings())
    store.initialize()
    return store


@lru_cache
def get_recorder() -> LocationRecorder:
    return LocationRecorder.for_settings(get_store(), get_settings())


class AddLocationRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    manual: bool = False


def _feature(value: RevealedGeometry | None) -> dict[str, Any] | None:
    return to_feature(value) if value is not None else None


def _merge_failed(exc: GeometryMergeError) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": "GEOMETRY_MERGE_FAILED", "message": str(exc)},
    )


@router.get("/api/health")
def get_health(store: GeometryStore = Depends(get_store)) -> dict:
    return {"status": "ok", "store_ready": store.is_ready}


@router.get("/api/geometry/{slot}")
def get_geometry(slot: GeometrySlot, store: GeometryStore = Depends(get_store)) -> dict | None:
    """Return one revealed geometry as a GeoJSON Feature (null when empty)."""
    if slot == "personal":
        return _feature(store.get_revealed_geometry())
    if slot == "shared":
        return _feature(store.get_shared_geometry())
    try:
        if slot == "shared-only":
            return _feature(store.get_shared_only_geometry())
        return _feature(store.get_all_revealed_geometry())
    except GeometryMergeError as e:
        raise _merge_failed(e) from e


@router.get("/api/stats")
def get_stats(store: GeometryStore = Depends(get_store)) -> dict:
    return {
        "personal": store.get_revealed_stats("personal").model_dump(),
        "shared": store.get_revealed_stats("shared").model_dump(),
    }


@router.get("/api/fog-overlay")
def get_fog_overlay(store: GeometryStore = Depends(get_store)) -> dict:
    try:
        return build_fog_overlay(store.get_all_revealed_geometry())
    except GeometryMergeError as e:
        raise _merge_failed(e) from e


@router.get("/api/snapshot")
def get_snapshot(
    lat: float | None = None,
    lon: float | None = None,
    store: GeometryStore = Depends(get_store),
) -> dict:
    current = GeoPoint(lat=lat, lon=lon) if lat is not None and lon is not None else None
    try:
        return take_snapshot(store, current).as_dict()
    except GeometryMergeError as e:
        raise _merge_failed(e) from e


@router.get("/api/export")
def get_export(store: GeometryStore = Depends(get_store)) -> dict:
    return export_history(store).model_dump(mode="json")


@router.post("/api/locations")
def post_location(
    body: AddLocationRequest,
    recorder: LocationRecorder = Depends(get_recorder),
    store: GeometryStore = Depends(get_store),
) -> dict:
    """Record a point; `accepted` is False when the significance filter skipped it."""
    significance = get_settings().significance
    threshold = significance.manual_min_distance_miles if body.manual else significance.live_min_distance_miles
    accepted = recorder.record(body.latitude, body.longitude, min_distance_miles=threshold)
    return {"accepted": accepted, "stats": store.get_revealed_stats("personal").model_dump()}


@router.post("/api/import")
async def post_import(request: Request, store: GeometryStore = Depends(get_store)) -> dict:
    """Import a peer's export payload into the shared geometry."""
    raw = await request.body()
    try:
        data = decode_export(raw)
    except MalformedExportDataError as e:
        raise HTTPException(
            status_code=422,
            detail={"code": "MALFORMED_EXPORT", "message": str(e)},
        ) from e
    imported = import_shared(store, data.locations)
    return {"received": len(data.locations), "imported": imported}
