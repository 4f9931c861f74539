import asyncio
import threading
import time

import pytest
from conftest import FakeMirror, woo_product
from fastapi.testclient import TestClient

from app import db
from app.config import settings
from app.main_app import app
from app.projects.project_store import upsert_project
from app.routes import get_mirror_factory
from app.woo.woo_models import RemoteProduct

AUTH = ("admin", "s3cret")
BASE = "/api/projects/7"


class FakeCatalog:
    def __init__(self, products):
        self.products = [RemoteProduct.model_validate(p) for p in products]
        self.gate = threading.Event()
        self.gate.set()
        self.calls = 0

    async def __call__(self, project, *, client=None, page_size=None, page_delay=None, on_page=None):
        self.calls += 1
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        if on_page:
            await on_page(1, len(self.products), len(self.products))
        return list(self.products)


@pytest.fixture
def env(projects_file, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_USER", AUTH[0])
    monkeypatch.setattr(settings, "ADMIN_PASS", AUTH[1])
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/runs.db")
    monkeypatch.setattr(settings, "SYNC_CHUNK_DELAY", 0)
    monkeypatch.setattr(settings, "SYNC_BACKOFF_BASE", 0)
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_sessionmaker", None)

    upsert_project(7, {"name": "Store", "woocommerce_base_url": "https://shop.example",
                       "woocommerce_consumer_key": "ck_0123456789abcdef"})
    upsert_project(8, {"name": "Paused", "is_active": False})

    mirror = FakeMirror([
        {"project_id": 7, "website_id": "1", "title": "Old one", "price": 0,
         "gia_shopee": 450000, "link_shopee": "https://shopee.vn/1"},
        {"project_id": 7, "website_id": "9", "title": "Gone"},
    ])
    catalog = FakeCatalog([woo_product(1, "One"), woo_product(2, "Two")])
    monkeypatch.setattr("app.sync.reconcile.fetch_all_products", catalog)
    app.dependency_overrides[get_mirror_factory] = lambda: (lambda project: mirror)

    with TestClient(app) as client:
        yield client, mirror, catalog
    app.dependency_overrides.clear()


def _wait_for(client, location, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        rec = client.get(location, auth=AUTH).json()
        if rec["status"] in ("done", "error"):
            return rec
        time.sleep(0.02)
    pytest.fail(f"job did not finish: {rec}")


def test_health_is_public(env):
    client, _, _ = env
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_auth_required(env):
    client, _, _ = env
    assert client.get(f"{BASE}/sync/check").status_code == 401
    assert client.get(f"{BASE}/sync/check", auth=("admin", "wrong")).status_code == 401
    assert client.get(f"{BASE}/products").status_code == 401


def test_check(env):
    client, mirror, _ = env
    response = client.get(f"{BASE}/sync/check", auth=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert (body["local_count"], body["remote_count"], body["missing_count"]) == (2, 2, 1)
    assert mirror.upsert_calls == 0


def test_unknown_and_inactive_projects(env):
    client, _, _ = env
    assert client.get("/api/projects/404/sync/check", auth=AUTH).status_code == 404
    assert client.post("/api/projects/8/sync/full", json={}, auth=AUTH).status_code == 409


def test_full_sync_job_flow(env):
    client, mirror, _ = env
    response = client.post(f"{BASE}/sync/full", json={}, auth=AUTH)
    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert response.headers["Location"] == f"{BASE}/sync/status/{job_id}"

    rec = _wait_for(client, response.headers["Location"])
    assert rec["status"] == "done"
    stats = rec["result"]["stats"]
    assert (stats["products_deleted"], stats["new_products_added"], stats["products_updated"]) == (1, 1, 1)
    assert sorted(r["title"] for r in mirror.scope(7)) == ["One", "Two"]
    assert rec["progress"]["phase"] == "refresh"

    jobs = client.get(f"{BASE}/sync/jobs", auth=AUTH).json()
    assert job_id in [j["id"] for j in jobs["jobs"]]
    assert jobs["active_job_id"] is None

    runs = client.get(f"{BASE}/sync/runs", auth=AUTH).json()["runs"]
    assert runs[0]["operation"] == "full"
    assert runs[0]["success"] is True
    assert runs[0]["job_id"] == job_id


def test_second_run_for_same_project_is_refused(env):
    client, _, catalog = env
    catalog.gate.clear()
    first = client.post(f"{BASE}/sync/stock", json={}, auth=AUTH)
    assert first.status_code == 202

    second = client.post(f"{BASE}/sync/full", json={"blocking": True}, auth=AUTH)
    assert second.status_code == 409
    assert second.json()["detail"]["job_id"] == first.json()["job_id"]

    catalog.gate.set()
    assert _wait_for(client, first.headers["Location"])["status"] == "done"
    assert client.post(f"{BASE}/sync/missing", json={"blocking": True}, auth=AUTH).status_code == 200


def test_blocking_run_and_confirmation_gate(env):
    client, mirror, catalog = env
    refused = client.post(f"{BASE}/sync/missing", json={"confirm": False}, auth=AUTH)
    assert refused.status_code == 400
    assert catalog.calls == 0

    response = client.post(f"{BASE}/sync/missing", json={"blocking": True}, auth=AUTH)
    assert response.status_code == 200
    assert response.json()["newly_added"] == 1
    assert len(mirror.scope(7)) == 3


def test_status_of_unknown_job(env):
    client, _, _ = env
    assert client.get(f"{BASE}/sync/status/nope", auth=AUTH).status_code == 404


def test_product_crud(env):
    client, mirror, _ = env
    listing = client.get(f"{BASE}/products", auth=AUTH).json()
    assert listing["total"] == 2
    row_id = next(r["id"] for r in listing["items"] if r["website_id"] == "1")

    assert client.get(f"{BASE}/products/{row_id}", auth=AUTH).json()["title"] == "Old one"
    assert client.get(f"{BASE}/products/999", auth=AUTH).status_code == 404

    edit = client.patch(
        f"{BASE}/products/{row_id}",
        json={"changes": {"title": "Edited"}, "auto_price": True},
        auth=AUTH,
    )
    assert edit.status_code == 200
    body = edit.json()
    assert body["auto_price"]["applied"] is True
    assert mirror.rows[row_id]["title"] == "Edited"
    assert mirror.rows[row_id]["price"] == 450000
    assert mirror.rows[row_id]["external_url"] == "https://shopee.vn/1"

    bad = client.patch(f"{BASE}/products/{row_id}", json={"changes": {"project_id": 8}}, auth=AUTH)
    assert bad.status_code == 422

    assert client.delete(f"{BASE}/products/{row_id}", auth=AUTH).status_code == 200
    assert row_id not in mirror.rows
    assert client.delete(f"{BASE}/products/{row_id}", auth=AUTH).status_code == 404


def test_product_stats_and_bulk_upload(env):
    client, mirror, _ = env
    response = client.post(
        f"{BASE}/products/bulk",
        json={"rows": [{"title": "Manual", "price": "120.000"}, {"websiteId": "77", "title": "Sheet"}]},
        auth=AUTH,
    )
    assert response.status_code == 200
    assert response.json()["succeeded"] == 2
    ids = {r["website_id"] for r in mirror.scope(7)}
    assert "77" in ids
    assert any(i.startswith("manual-") for i in ids)

    stats = client.get(f"{BASE}/products/stats", auth=AUTH).json()
    assert stats["total"] == 4


def test_project_registry(env):
    client, _, _ = env
    listed = client.get("/api/projects", auth=AUTH).json()["projects"]
    store = next(p for p in listed if p["project_id"] == 7)
    assert store["woocommerce_consumer_key"] == "ck_012…"

    saved = client.put("/api/projects/9", json={"name": "Third", "products_table": "products_three"}, auth=AUTH)
    assert saved.status_code == 200
    assert client.get("/api/projects/9", auth=AUTH).json()["products_table"] == "products_three"
    assert client.delete("/api/projects/9", auth=AUTH).status_code == 200
    assert client.get("/api/projects/9", auth=AUTH).status_code == 404


def test_failing_mirror_factory_releases_the_project(env):
    client, mirror, _ = env

    def broken(project):
        raise RuntimeError("mirror not configured")

    app.dependency_overrides[get_mirror_factory] = lambda: broken
    response = client.post(f"{BASE}/sync/full", json={}, auth=AUTH)
    assert response.status_code == 202
    rec = _wait_for(client, response.headers["Location"])
    assert rec["status"] == "error"
    assert "mirror not configured" in rec["error"]

    app.dependency_overrides[get_mirror_factory] = lambda: (lambda project: mirror)
    assert client.post(f"{BASE}/sync/missing", json={"blocking": True}, auth=AUTH).status_code == 200
