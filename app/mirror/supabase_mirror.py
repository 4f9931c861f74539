"""
Supabase PostgREST access to the products mirror table.
Plain httpx (no Supabase client library); every call is scoped by project_id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import httpx

from app.config import settings
from app.errors import MirrorError, MissingScopeError
from app.logging_filters import clean_error_text
from app.models.products import ProductFilter
from app.sync.components.mapping import (
    CONFLICT_COLUMNS,
    EXTERNAL_ID_COLUMN,
    SCOPE_COLUMN,
    ensure_external_id,
)
from app.sync.components.batch import BatchReport, apply_chunked
from app.sync.components.platforms import STOCK_COLUMN, Platform, stock_flag_from_value
from app.sync.components.util import now_iso

logger = logging.getLogger("uvicorn.error")

READ_PAGE_SIZE = 1000  # PostgREST default max-rows


@dataclass
class MirrorResult:
    ok: bool
    count: int = 0
    error: Optional[str] = None
    status_code: Optional[int] = None


def _require_scope(project_id: Any) -> None:
    if project_id is None or project_id == "":
        raise MissingScopeError("No project selected for mirror operation")


def _normalize_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """PostgREST bulk writes need every object to carry the same keys."""
    all_keys: set = set()
    for r in rows:
        all_keys.update(r.keys())
    return [{k: r.get(k) for k in all_keys} for r in rows]


def _json_rows(resp: httpx.Response, what: str) -> List[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError as e:
        raise MirrorError(
            f"{what}: invalid JSON from mirror (HTTP {resp.status_code}) {clean_error_text(resp.text)}",
            status_code=resp.status_code,
        ) from e
    if data is None:
        return []
    if not isinstance(data, list):
        raise MirrorError(f"{what}: unexpected mirror payload", status_code=resp.status_code)
    return data


def _total_from_content_range(value: str | None) -> Optional[int]:
    # "0-49/1234" or "*/0"
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class SupabaseMirror:
    """Keyed upsert store for one products table; see MirrorResult for write outcomes."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        table: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        base = (base_url or settings.SUPABASE_URL).rstrip("/")
        key = api_key or settings.SUPABASE_KEY
        self.table = table or settings.PRODUCTS_TABLE
        self._client = httpx.AsyncClient(
            base_url=f"{base}/rest/v1",
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.SUPABASE_TIMEOUT,
            transport=transport,
        )

    @classmethod
    def for_project(cls, project, **kw) -> "SupabaseMirror":
        return cls(table=project.table, **kw)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SupabaseMirror":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @property
    def _path(self) -> str:
        return f"/{self.table}"

    # ---- reads ----

    async def _select_all(self, project_id: Any, select: str, extra: Dict[str, str] | None = None) -> List[Dict[str, Any]]:
        _require_scope(project_id)
        rows: List[Dict[str, Any]] = []
        offset = 0
        params = {SCOPE_COLUMN: f"eq.{project_id}", "select": select, "order": "id.asc", **(extra or {})}
        while True:
            try:
                resp = await self._client.get(
                    self._path,
                    params=params,
                    headers={"Range-Unit": "items", "Range": f"{offset}-{offset + READ_PAGE_SIZE - 1}"},
                )
            except httpx.HTTPError as e:
                raise MirrorError(f"Mirror read failed: {e}") from e
            if resp.status_code not in (200, 206):
                raise MirrorError(
                    f"Mirror read failed: HTTP {resp.status_code} {clean_error_text(resp.text)}",
                    status_code=resp.status_code,
                )
            page = _json_rows(resp, "Mirror read failed")
            rows.extend(page)
            if len(page) < READ_PAGE_SIZE:
                break
            offset += READ_PAGE_SIZE
        return rows

    async def list_keys(self, project_id: Any) -> Set[str]:
        """External ids present in the scope (projection only)."""
        rows = await self._select_all(project_id, EXTERNAL_ID_COLUMN)
        return {str(r[EXTERNAL_ID_COLUMN]) for r in rows if r.get(EXTERNAL_ID_COLUMN) is not None}

    async def list_rows(self, project_id: Any, fields: Sequence[str]) -> List[Dict[str, Any]]:
        return await self._select_all(project_id, ",".join(fields))

    # ---- chunk writes (used through the batch writer) ----

    async def upsert_chunk(
        self,
        project_id: Any,
        rows: Iterable[Dict[str, Any]],
        conflict_keys: Sequence[str] = CONFLICT_COLUMNS,
    ) -> MirrorResult:
        """
        Idempotent upsert on (project_id, website_id). Transport problems and
        rejections come back as MirrorResult(ok=False) instead of raising.
        """
        _require_scope(project_id)
        stamped: List[Dict[str, Any]] = []
        ts = now_iso()
        for r in rows:
            if r.get(SCOPE_COLUMN) not in (None, project_id):
                return MirrorResult(ok=False, error=f"Row scoped to project {r.get(SCOPE_COLUMN)} in a write for {project_id}")
            row = ensure_external_id({**r, SCOPE_COLUMN: project_id})
            row.pop("id", None)
            row["updated_at"] = ts
            stamped.append(row)
        if not stamped:
            return MirrorResult(ok=True, count=0)

        try:
            resp = await self._client.post(
                self._path,
                params={"on_conflict": ",".join(conflict_keys)},
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                json=_normalize_rows(stamped),
            )
        except httpx.HTTPError as e:
            return MirrorResult(ok=False, error=str(e))
        if resp.status_code not in (200, 201, 204):
            return MirrorResult(ok=False, status_code=resp.status_code, error=clean_error_text(resp.text))
        return MirrorResult(ok=True, count=len(stamped), status_code=resp.status_code)

    async def insert_rows(self, project_id: Any, rows: Sequence[Dict[str, Any]], *, chunk_delay: float | None = None) -> BatchReport:
        """Bulk upload path: larger chunks, synthetic ids for rows without a Woo id."""
        _require_scope(project_id)
        prepared = [ensure_external_id(dict(r)) for r in rows]

        async def _upsert(chunk):
            return await self.upsert_chunk(project_id, chunk)

        return await apply_chunked(
            prepared,
            settings.UPLOAD_CHUNK_SIZE,
            _upsert,
            chunk_delay=chunk_delay,
            label="upload",
        )

    async def delete_by_ids(self, project_id: Any, ids: Sequence[Any]) -> int:
        """Physical delete by internal primary key. Raises MirrorError on rejection."""
        _require_scope(project_id)
        if not ids:
            return 0
        id_list = ",".join(str(i) for i in ids)
        try:
            resp = await self._client.delete(
                self._path,
                params={SCOPE_COLUMN: f"eq.{project_id}", "id": f"in.({id_list})", "select": "id"},
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as e:
            raise MirrorError(f"Mirror delete failed: {e}") from e
        if resp.status_code not in (200, 204):
            raise MirrorError(
                f"Mirror delete failed: HTTP {resp.status_code} {clean_error_text(resp.text)}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return len(ids)
        return len(_json_rows(resp, "Mirror delete failed"))

    async def update_by_id(self, project_id: Any, row_id: Any, fields: Dict[str, Any]) -> MirrorResult:
        """Partial update of one row; the scope and external id are not writable here."""
        _require_scope(project_id)
        body = {k: v for k, v in fields.items() if k not in ("id", SCOPE_COLUMN, EXTERNAL_ID_COLUMN, "created_at")}
        body["updated_at"] = now_iso()
        try:
            resp = await self._client.patch(
                self._path,
                params={"id": f"eq.{row_id}", SCOPE_COLUMN: f"eq.{project_id}", "select": "id"},
                headers={"Prefer": "return=representation"},
                json=body,
            )
        except httpx.HTTPError as e:
            return MirrorResult(ok=False, error=str(e))
        if resp.status_code != 200:
            return MirrorResult(ok=False, status_code=resp.status_code, error=clean_error_text(resp.text))
        try:
            data = _json_rows(resp, f"Mirror update of row {row_id} failed")
        except MirrorError as e:
            return MirrorResult(ok=False, status_code=resp.status_code, error=str(e))
        if not data:
            return MirrorResult(ok=False, status_code=200, error=f"Row {row_id} not found in project {project_id}")
        return MirrorResult(ok=True, count=len(data), status_code=200)

    # ---- product management ----

    async def list_products(self, project_id: Any, filt: ProductFilter | None = None) -> Tuple[List[Dict[str, Any]], int]:
        _require_scope(project_id)
        filt = filt or ProductFilter()
        params: List[Tuple[str, str]] = [
            (SCOPE_COLUMN, f"eq.{project_id}"),
            ("select", "*"),
            ("order", "updated_at.desc"),
        ]
        if filt.search:
            term = filt.search.replace(",", " ").replace("(", " ").replace(")", " ").strip()
            params.append(("or", f"(title.ilike.*{term}*,sku.ilike.*{term}*)"))
        if filt.stock_status == "instock":
            params.append((STOCK_COLUMN, "eq.false"))
        elif filt.stock_status == "outofstock":
            params.append((STOCK_COLUMN, "eq.true"))
        if filt.platform:
            params.append((Platform(filt.platform).link_column, "neq."))
        if filt.recently_updated:
            since = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
            params.append(("updated_at", f"gte.{since}"))

        offset = (filt.page - 1) * filt.page_size
        try:
            resp = await self._client.get(
                self._path,
                params=params,
                headers={
                    "Prefer": "count=exact",
                    "Range-Unit": "items",
                    "Range": f"{offset}-{offset + filt.page_size - 1}",
                },
            )
        except httpx.HTTPError as e:
            raise MirrorError(f"Product query failed: {e}") from e
        if resp.status_code == 416:
            # page past the end
            return [], _total_from_content_range(resp.headers.get("Content-Range")) or 0
        if resp.status_code not in (200, 206):
            raise MirrorError(
                f"Product query failed: HTTP {resp.status_code} {clean_error_text(resp.text)}",
                status_code=resp.status_code,
            )
        data = _json_rows(resp, "Product query failed")
        total = _total_from_content_range(resp.headers.get("Content-Range"))
        return data, total if total is not None else len(data)

    async def get_product(self, project_id: Any, row_id: Any) -> Optional[Dict[str, Any]]:
        _require_scope(project_id)
        try:
            resp = await self._client.get(
                self._path,
                params={SCOPE_COLUMN: f"eq.{project_id}", "id": f"eq.{row_id}", "select": "*"},
            )
        except httpx.HTTPError as e:
            raise MirrorError(f"Product read failed: {e}") from e
        if resp.status_code != 200:
            raise MirrorError(f"Product read failed: HTTP {resp.status_code}", status_code=resp.status_code)
        data = _json_rows(resp, "Product read failed")
        return data[0] if data else None

    async def find_by_external_id(self, project_id: Any, external_id: Any) -> Optional[Dict[str, Any]]:
        _require_scope(project_id)
        try:
            resp = await self._client.get(
                self._path,
                params={SCOPE_COLUMN: f"eq.{project_id}", EXTERNAL_ID_COLUMN: f"eq.{external_id}", "select": "*"},
            )
        except httpx.HTTPError as e:
            raise MirrorError(f"Product read failed: {e}") from e
        if resp.status_code != 200:
            raise MirrorError(f"Product read failed: HTTP {resp.status_code}", status_code=resp.status_code)
        data = _json_rows(resp, "Product read failed")
        return data[0] if data else None

    async def delete_product(self, project_id: Any, row_id: Any) -> bool:
        try:
            return await self.delete_by_ids(project_id, [row_id]) > 0
        except MirrorError as e:
            logger.error("[MIRROR] delete of product %s failed: %s", row_id, e)
            return False

    async def product_stats(self, project_id: Any) -> Dict[str, Any]:
        cols = [STOCK_COLUMN] + [p.link_column for p in Platform]
        rows = await self.list_rows(project_id, cols)
        out_of_stock = sum(1 for r in rows if stock_flag_from_value(r.get(STOCK_COLUMN)))
        return {
            "total": len(rows),
            "in_stock": len(rows) - out_of_stock,
            "out_of_stock": out_of_stock,
            "platforms": {p.value: sum(1 for r in rows if (r.get(p.link_column) or "").strip()) for p in Platform},
        }
