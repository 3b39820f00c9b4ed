# GuideSync test scripts
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.templatesAPI import build_router
from gs_platform.engine import Engine
from gs_platform.models import CatalogSnapshot

A = "a" * 32
B = "b" * 32


def _client(store, catalog, arr, seed) -> TestClient:
    catalog.add(
        CatalogSnapshot(
            service="RADARR",
            version="v2",
            rules=[seed.cf(A, "Tier 01", 75), seed.cf(B, "Tier 02", 40)],
            groups=[seed.group("g1", "Tiers", A, B)],
        )
    )
    seed.template(
        store,
        [seed.rule(seed.cf(A, "Tier 01", 50))],
        groups=[{"trashId": "g1", "name": "Tiers", "enabled": True, "originalConfig": seed.group("g1", "Tiers", A)}],
    )
    seed.instance(store)
    engine = Engine({}, store=store, catalog=catalog, client_factory=lambda inst: arr)

    app = FastAPI()
    app.include_router(build_router(engine))
    return TestClient(app)


def test_user_header_is_required(config_base, store, catalog, arr, seed) -> None:
    client = _client(store, catalog, arr, seed)
    r = client.get("/api/templates/updates")
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "not_authorized"


def test_updates_and_diff(config_base, store, catalog, arr, seed) -> None:
    client = _client(store, catalog, arr, seed)
    h = {"X-User-Id": "u1"}

    up = client.get("/api/templates/updates", headers=h).json()
    assert up["latest_version"] == "v2"
    assert up["templates_with_updates"][0]["pending_additions"] == [B]

    d = client.get("/api/templates/t1/diff", headers=h)
    assert d.status_code == 200
    assert [s["trash_id"] for s in d.json()["suggested_additions"]] == [B]

    assert client.get("/api/templates/t1/diff", headers={"X-User-Id": "u2"}).status_code == 403
    assert client.get("/api/templates/nope/diff", headers=h).status_code == 404


def test_sync_then_deploy(config_base, store, catalog, arr, seed) -> None:
    client = _client(store, catalog, arr, seed)
    h = {"X-User-Id": "u1"}

    s = client.post("/api/templates/t1/sync", json={"approved_additions": [B]}, headers=h)
    assert s.status_code == 200
    body = s.json()
    assert body["success"] is True
    assert body["new_version"] == "v2"
    assert body["merge_stats"]["custom_formats_added"] == 1

    dep = client.post("/api/templates/t1/deploy", json={"instance_id": "i1"}, headers=h)
    assert dep.status_code == 200
    assert dep.json()["created"] == 2
    assert dep.json()["status"] == "SUCCESS"

    bulk = client.post("/api/templates/t1/deploy/bulk", json={"instance_ids": ["i1", "ghost"]}, headers=h)
    assert bulk.status_code == 200
    assert (bulk.json()["successful"], bulk.json()["failed"]) == (1, 1)

    metrics = client.get("/api/templates/metrics").json()
    assert metrics["sync"]["total"] == 1
    assert metrics["deploy"]["total"] == 3


def test_error_codes_map_to_http_status(config_base, store, catalog, arr, seed) -> None:
    client = _client(store, catalog, arr, seed)
    h = {"X-User-Id": "u1"}

    assert client.post("/api/templates/nope/sync", headers=h).status_code == 404
    assert client.post("/api/templates/t1/sync", headers={"X-User-Id": "u2"}).status_code == 403

    r = client.post("/api/templates/t1/deploy", json={"instance_id": "ghost"}, headers=h)
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "not_found"

    arr.unreachable = True
    r = client.post("/api/templates/t1/deploy", json={"instance_id": "i1"}, headers=h)
    assert r.status_code == 502
    assert r.json()["detail"]["code"] == "unreachable"

    failed = client.post("/api/templates/t1/sync", json={"target_version": "zzz"}, headers=h)
    assert failed.status_code == 200
    assert failed.json()["error_code"] == "sync_failed"


def test_preview_then_restore(config_base, store, catalog, arr, seed) -> None:
    client = _client(store, catalog, arr, seed)
    h = {"X-User-Id": "u1"}
    arr.cfs.append({"id": 5, "name": "Tier 01", "specifications": []})

    pv = client.post("/api/templates/t1/deploy/preview", json={"instance_id": "i1"}, headers=h)
    assert pv.status_code == 200
    body = pv.json()
    assert body["update_count"] == 1
    assert body["requires_conflict_resolution"] is True
    assert body["items"][0]["conflicts"][0]["conflict_type"] == "specification_mismatch"
    assert arr.calls == []

    dep = client.post(
        "/api/templates/t1/deploy",
        json={"instance_id": "i1", "conflict_resolutions": {A: "use_template"}},
        headers=h,
    ).json()
    r = client.post(f"/api/templates/backups/{dep['backup_id']}/restore", headers=h)
    assert r.status_code == 200
    assert (r.json()["restored"], r.json()["success"]) == (1, True)

    assert client.post("/api/templates/backups/nope/restore", headers=h).status_code == 404
    assert client.post(f"/api/templates/backups/{dep['backup_id']}/restore", headers={"X-User-Id": "u2"}).status_code == 403
