import itertools
from typing import Any, Dict, List

import httpx
import pytest

from app.config import settings
from app.mirror.supabase_mirror import MirrorResult
from app.models.projects import Project
from app.sync.components.batch import BatchReport
from app.sync.components.mapping import EXTERNAL_ID_COLUMN, SCOPE_COLUMN, ensure_external_id


def woo_product(pid: int, name: str = None, meta: List[Dict[str, Any]] = None, **extra) -> Dict[str, Any]:
    """A WooCommerce REST product as the store returns it."""
    data = {
        "id": pid,
        "name": name or f"Product {pid}",
        "sku": f"SKU-{pid}",
        "permalink": f"https://shop.example/p/{pid}",
        "regular_price": "1.000.000",
        "sale_price": "",
        "status": "publish",
        "images": [{"id": 1, "src": f"https://shop.example/img/{pid}.jpg"}],
        "categories": [],
        "meta_data": meta or [],
    }
    data.update(extra)
    return data


def woo_transport(products: List[Dict[str, Any]], *, fail_page: int = None, calls: list = None) -> httpx.MockTransport:
    """Serves GET /products pages out of `products`."""
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if not request.url.path.endswith("/products"):
            return httpx.Response(404, json={"code": "not_found"})
        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", "10"))
        if fail_page is not None and page == fail_page:
            return httpx.Response(500, text="<html><title>Error</title><body>boom</body></html>")
        start = (page - 1) * per_page
        return httpx.Response(200, json=products[start:start + per_page])
    return httpx.MockTransport(handler)


class FakeMirror:
    """In-memory stand-in for SupabaseMirror, one table, any number of scopes."""

    table = "products_test"

    def __init__(self, rows: List[Dict[str, Any]] = None):
        self.rows: Dict[int, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self.fail_upserts = 0       # next N upsert calls fail
        self.fail_updates = set()   # row ids whose update is rejected
        self.fail_deletes = 0
        self.upsert_calls = 0
        self.update_calls = 0
        self.closed = False
        for r in rows or []:
            self._insert(dict(r))

    def _insert(self, row):
        row_id = row.get("id") or next(self._ids)
        row["id"] = row_id
        self.rows[row_id] = row
        return row

    def scope(self, project_id):
        return [r for r in self.rows.values() if r.get(SCOPE_COLUMN) == project_id]

    async def list_keys(self, project_id):
        return {str(r[EXTERNAL_ID_COLUMN]) for r in self.scope(project_id)}

    async def list_rows(self, project_id, fields):
        return [{f: r.get(f) for f in fields} for r in self.scope(project_id)]

    async def upsert_chunk(self, project_id, rows, conflict_keys=None):
        self.upsert_calls += 1
        if self.fail_upserts:
            self.fail_upserts -= 1
            return MirrorResult(ok=False, status_code=409, error="duplicate key value")
        for r in rows:
            r = ensure_external_id({**r, SCOPE_COLUMN: project_id})
            existing = next((x for x in self.scope(project_id)
                             if str(x[EXTERNAL_ID_COLUMN]) == str(r[EXTERNAL_ID_COLUMN])), None)
            if existing:
                existing.update({k: v for k, v in r.items() if k != "id"})
            else:
                self._insert({k: v for k, v in r.items() if k != "id"})
        return MirrorResult(ok=True, count=len(rows))

    async def insert_rows(self, project_id, rows, *, chunk_delay=None):
        res = await self.upsert_chunk(project_id, rows)
        return BatchReport(succeeded=len(rows)) if res.ok else BatchReport(failed=len(rows), errors=[res.error])

    async def delete_by_ids(self, project_id, ids):
        if self.fail_deletes:
            self.fail_deletes -= 1
            raise RuntimeError("delete rejected")
        n = 0
        for i in ids:
            row = self.rows.get(i)
            if row and row.get(SCOPE_COLUMN) == project_id:
                del self.rows[i]
                n += 1
        return n

    async def update_by_id(self, project_id, row_id, fields):
        self.update_calls += 1
        row = self.rows.get(row_id)
        if row is None or row.get(SCOPE_COLUMN) != project_id:
            return MirrorResult(ok=False, error="not found")
        if row_id in self.fail_updates:
            return MirrorResult(ok=False, status_code=400, error="rejected")
        row.update(fields)
        return MirrorResult(ok=True, count=1)

    async def get_product(self, project_id, row_id):
        row = self.rows.get(row_id)
        return dict(row) if row and row.get(SCOPE_COLUMN) == project_id else None

    async def find_by_external_id(self, project_id, external_id):
        for r in self.scope(project_id):
            if str(r[EXTERNAL_ID_COLUMN]) == str(external_id):
                return dict(r)
        return None

    async def delete_product(self, project_id, row_id):
        return await self.delete_by_ids(project_id, [row_id]) > 0

    async def list_products(self, project_id, filt=None):
        rows = self.scope(project_id)
        return [dict(r) for r in rows], len(rows)

    async def product_stats(self, project_id):
        rows = self.scope(project_id)
        out = sum(1 for r in rows if r.get("het_hang"))
        return {"total": len(rows), "in_stock": len(rows) - out, "out_of_stock": out, "platforms": {}}

    async def aclose(self):
        self.closed = True


@pytest.fixture
def project():
    return Project(
        project_id=7,
        name="Test store",
        woocommerce_base_url="https://shop.example",
        woocommerce_consumer_key="ck_test",
        woocommerce_consumer_secret="cs_test",
        products_table="products_test",
    )


@pytest.fixture
def fake_mirror():
    return FakeMirror()


@pytest.fixture
def projects_file(tmp_path, monkeypatch):
    path = tmp_path / "projects.json"
    monkeypatch.setattr(settings, "PROJECTS_PATH", str(path))
    return path
