import json

import pytest
from starlette.testclient import TestClient

from fogmap.api.app import app
from fogmap.api.routes import get_recorder, get_store
from fogmap.core.errors import GeometryMergeError
from fogmap.geometry import merge
from fogmap.tracking.significance import LastPointFilter
from fogmap.tracking.tracker import LocationRecorder


@pytest.fixture
def client(store):
    recorder = LocationRecorder(store, LastPointFilter())
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_recorder] = lambda: recorder
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_health_and_empty_geometry(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store_ready": True}

    resp = client.get("/api/geometry/personal")
    assert resp.status_code == 200
    assert resp.json() is None


def test_unknown_slot_is_rejected(client):
    assert client.get("/api/geometry/nowhere").status_code == 422


def test_post_location_goes_through_significance_filter(client):
    first = client.post("/api/locations", json={"latitude": 37.7749, "longitude": -122.4194})
    second = client.post("/api/locations", json={"latitude": 37.7750, "longitude": -122.4194})
    manual = client.post(
        "/api/locations", json={"latitude": 37.7750, "longitude": -122.4194, "manual": True}
    )

    assert first.json()["accepted"] is True
    assert second.json()["accepted"] is False
    assert manual.json()["accepted"] is True
    assert manual.json()["stats"]["point_count"] == 2

    feature = client.get("/api/geometry/personal").json()
    assert feature["type"] == "Feature"
    assert feature["geometry"]["type"] == "Polygon"
    assert feature["properties"]["point_count"] == 2


def test_post_location_validates_range(client):
    resp = client.post("/api/locations", json={"latitude": 91, "longitude": 0})
    assert resp.status_code == 422


def test_import_then_views_and_overlay(client, store):
    store.add_visited_location(37.7749, -122.4194)
    payload = {"version": 1, "locations": [{"lat": 37.7900, "lon": -122.4194, "ts": 10}]}

    resp = client.post("/api/import", content=json.dumps(payload))
    assert resp.status_code == 200
    assert resp.json() == {"received": 1, "imported": 1}

    again = client.post("/api/import", content=json.dumps(payload))
    assert again.json()["imported"] == 0

    assert client.get("/api/geometry/shared-only").json()["geometry"]["type"] == "Polygon"
    assert client.get("/api/geometry/all").json()["geometry"]["type"] == "MultiPolygon"

    stats = client.get("/api/stats").json()
    assert stats["personal"]["point_count"] == 1
    assert stats["shared"]["point_count"] == 1

    fog = client.get("/api/fog-overlay").json()
    assert fog["type"] == "Polygon"
    assert len(fog["coordinates"]) == 3


def test_import_rejects_malformed_payload(client):
    resp = client.post("/api/import", content=b"{not json")
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "MALFORMED_EXPORT"


def test_export_lists_personal_history(client, store):
    store.add_visited_location(1.0, 2.0)
    store.add_shared_location(3.0, 4.0, 5)

    data = client.get("/api/export").json()
    assert data["version"] == 1
    assert [(loc["lat"], loc["lon"]) for loc in data["locations"]] == [(1.0, 2.0)]


def test_snapshot_includes_current_location(client, store):
    store.add_visited_location(1.0, 2.0)
    snap = client.get("/api/snapshot", params={"lat": 1.0, "lon": 2.0}).json()

    assert snap["personal"]["properties"]["point_count"] == 1
    assert snap["shared"] is None
    assert snap["current_location"]["geometry"]["coordinates"] == [2.0, 1.0]
    assert len(snap["current_disc"]["coordinates"][0]) == 33
    assert len(snap["fog"]["coordinates"]) == 2


@pytest.mark.parametrize(
    "path",
    ["/api/geometry/shared-only", "/api/geometry/all", "/api/fog-overlay", "/api/snapshot"],
)
def test_combined_views_map_merge_failure_to_error_detail(client, store, monkeypatch, path):
    store.add_visited_location(1.0, 2.0)
    store.add_shared_location(1.01, 2.0, 5)

    def fail(*_args, **_kwargs):
        raise GeometryMergeError("invalid ring")

    monkeypatch.setattr(merge, "union_all", fail)
    monkeypatch.setattr(merge, "difference", fail)

    resp = client.get(path)
    assert resp.status_code == 500
    assert resp.json()["detail"] == {"code": "GEOMETRY_MERGE_FAILED", "message": "invalid ring"}
