# app/sync/reconcile.py
# =======================================================
# WooCommerce → Supabase mirror reconciliation
# - CheckOnly: counts + missing list, no writes
# - SyncMissing: add remote products the mirror lacks
# - UpdateStockOnly: flip het_hang where it changed
# - UpdateAllFields: overwrite mapped fields on every matched row
# - ComprehensiveSync: analyze → delete orphans (guarded) → add → refresh
# =======================================================
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from app.config import settings
from app.errors import MissingScopeError, SyncError
from app.mirror.supabase_mirror import SupabaseMirror
from app.models.projects import Project
from app.sync.components.batch import BatchReport, ChunkOutcome, apply_chunked
from app.sync.components.diff import CatalogDiff, diff_catalog, find_orphans, index_by_external_id
from app.sync.components.mapping import (
    EXTERNAL_ID_COLUMN,
    map_remote_fields,
    map_remote_to_record,
)
from app.sync.components.platforms import STOCK_COLUMN, stock_flag_from_meta, stock_flag_from_value
from app.sync.components.util import notify
from app.sync.reports import (
    CheckReport,
    ComprehensiveStats,
    ComprehensiveSyncResult,
    FieldUpdateResult,
    StockStats,
    StockUpdateResult,
    SyncReport,
)
from app.woo.woo_models import RemoteProduct
from app.woo.woocommerce import fetch_all_products

logger = logging.getLogger("uvicorn.error")

# Failures that end a run early but still produce a report
RUN_ERRORS = (SyncError, httpx.HTTPError)

ProgressCallback = Callable[[dict], Any]


def _stock_stats(rows: Sequence[Dict[str, Any]]) -> StockStats:
    out = sum(1 for r in rows if stock_flag_from_value(r.get(STOCK_COLUMN)))
    return StockStats(instock=len(rows) - out, outofstock=out, total=len(rows))


class ProductReconciler:
    """
    Reconciles one project's WooCommerce catalog into its mirror slice.

    Holds no lock: callers must not run two operations for the same project
    at once. Every write goes through apply_chunked (retry + fail-forward).
    """

    def __init__(
        self,
        project: Project,
        mirror: SupabaseMirror,
        *,
        wc_client: httpx.AsyncClient | None = None,
        chunk_size: int | None = None,
        chunk_delay: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        page_delay: float | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if project is None or project.project_id is None:
            raise MissingScopeError("No project selected for sync operation")
        self.project = project
        self.project_id = project.project_id
        self.mirror = mirror
        self.wc_client = wc_client
        self.chunk_size = chunk_size or settings.SYNC_CHUNK_SIZE
        self.chunk_delay = settings.SYNC_CHUNK_DELAY if chunk_delay is None else chunk_delay
        self.max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
        self.backoff_base = settings.SYNC_BACKOFF_BASE if backoff_base is None else backoff_base
        self.page_delay = page_delay
        self.on_progress = on_progress

    # ---- building blocks ----

    async def _fetch_remote(self) -> List[RemoteProduct]:
        async def _on_page(page: int, count: int, total: int):
            await notify(self.on_progress, {"phase": "fetch", "page": page, "done": total, "total": None})

        started = time.monotonic()
        products = await fetch_all_products(
            self.project,
            client=self.wc_client,
            page_delay=self.page_delay,
            on_page=_on_page,
        )
        logger.info(
            "[SYNC] project=%s fetched %s WooCommerce products in %.1fs",
            self.project_id, len(products), time.monotonic() - started,
        )
        return products

    async def _write(self, items: Sequence[Any], operation, label: str) -> BatchReport:
        return await apply_chunked(
            items,
            self.chunk_size,
            operation,
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            chunk_delay=self.chunk_delay,
            label=label,
            on_progress=self.on_progress,
        )

    async def _analyze(self) -> Tuple[List[RemoteProduct], set, CatalogDiff]:
        remote = await self._fetch_remote()
        local_keys = await self.mirror.list_keys(self.project_id)
        return remote, local_keys, diff_catalog(remote, local_keys)

    async def _add_products(self, products: Sequence[RemoteProduct]) -> BatchReport:
        rows = [map_remote_to_record(p, self.project_id) for p in products]

        async def _upsert(chunk):
            return await self.mirror.upsert_chunk(self.project_id, chunk)

        return await self._write(rows, _upsert, "add")

    async def _update_rows(self, updates: Sequence[Tuple[Any, Dict[str, Any]]], label: str) -> BatchReport:
        async def _apply(chunk):
            rejected = []
            for row_id, fields in chunk:
                res = await self.mirror.update_by_id(self.project_id, row_id, fields)
                if not res.ok:
                    rejected.append(((row_id, fields), f"product id {row_id}: {res.error}"))
            return ChunkOutcome(retry=rejected)

        return await self._write(updates, _apply, label)

    async def _delete_rows(self, ids: Sequence[Any]) -> BatchReport:
        async def _delete(chunk):
            deleted = await self.mirror.delete_by_ids(self.project_id, chunk)
            if deleted < len(chunk):
                missing = len(chunk) - deleted
                return ChunkOutcome(
                    unapplied=missing,
                    note=f"{missing} of {len(chunk)} rows were not deleted (already gone or outside project {self.project_id})",
                )
            return ChunkOutcome()

        return await self._write(ids, _delete, "delete")

    # ---- operations ----

    async def check_only(self) -> CheckReport:
        """Counts and the list of missing products; never writes."""
        try:
            remote, local_keys, diff = await self._analyze()
        except RUN_ERRORS as e:
            logger.error("[SYNC] project=%s check failed: %s", self.project_id, e)
            return CheckReport(success=False, errors=[str(e)])
        return CheckReport(
            local_count=len(local_keys),
            remote_count=len(remote),
            missing_count=len(diff.missing),
            missing_list=[map_remote_to_record(p, self.project_id) for p in diff.missing],
        )

    async def sync_missing(self) -> SyncReport:
        """Additive catch-up: insert remote products the mirror does not have yet."""
        report = SyncReport()
        try:
            remote, local_keys, diff = await self._analyze()
        except RUN_ERRORS as e:
            logger.error("[SYNC] project=%s sync-missing failed: %s", self.project_id, e)
            report.errors.append(str(e))
            report.success = False
            return report

        report.tool_products = len(local_keys)
        report.woo_products = len(remote)
        report.missing_products = len(diff.missing)
        report.missing_products_list = [map_remote_to_record(p, self.project_id) for p in diff.missing]

        if diff.missing:
            res = await self._add_products(diff.missing)
            report.newly_added = res.succeeded
            report.errors.extend(res.errors)
        report.success = not report.errors
        logger.info(
            "[SYNC] project=%s sync-missing: %s missing, %s added, %s errors",
            self.project_id, report.missing_products, report.newly_added, len(report.errors),
        )
        return report

    async def update_stock_only(self) -> StockUpdateResult:
        """Recompute het_hang from WooCommerce meta and write only rows whose flag changed."""
        result = StockUpdateResult()
        try:
            remote = await self._fetch_remote()
            rows = await self.mirror.list_rows(self.project_id, ["id", EXTERNAL_ID_COLUMN, STOCK_COLUMN])
        except RUN_ERRORS as e:
            logger.error("[SYNC] project=%s stock update failed: %s", self.project_id, e)
            return StockUpdateResult(success=False, message=f"Stock status update failed: {e}", errors=[str(e)])

        if not rows:
            return StockUpdateResult(success=False, message="No products found in database")

        result.before_stats = _stock_stats(rows)
        by_id = index_by_external_id(remote)
        changes: List[Tuple[Any, Dict[str, Any]]] = []
        for row in rows:
            product = by_id.get(str(row.get(EXTERNAL_ID_COLUMN) or ""))
            if product is None:
                continue
            flag = stock_flag_from_meta(product.meta_data)
            if flag != stock_flag_from_value(row.get(STOCK_COLUMN)):
                changes.append((row["id"], {STOCK_COLUMN: flag}))

        if changes:
            res = await self._update_rows(changes, "stock")
            result.updated = res.succeeded
            result.errors.extend(res.errors)

        try:
            after_rows = await self.mirror.list_rows(self.project_id, ["id", STOCK_COLUMN])
            result.after_stats = _stock_stats(after_rows)
        except RUN_ERRORS as e:
            result.errors.append(f"Failed to get final counts: {e}")
            result.after_stats = result.before_stats

        result.success = not result.errors
        result.message = (
            f"Successfully updated {result.updated} products stock status"
            if result.updated
            else "No products needed stock status update"
        )
        logger.info(
            "[SYNC] project=%s stock: before %s/%s, after %s/%s (in/out), %s updated",
            self.project_id,
            result.before_stats.instock, result.before_stats.outofstock,
            result.after_stats.instock, result.after_stats.outofstock,
            result.updated,
        )
        return result

    async def _refresh(self, remote: Sequence[RemoteProduct], rows: Sequence[Dict[str, Any]]) -> Tuple[BatchReport, int]:
        by_id = index_by_external_id(remote)
        updates: List[Tuple[Any, Dict[str, Any]]] = []
        skipped = 0
        for row in rows:
            product = by_id.get(str(row.get(EXTERNAL_ID_COLUMN) or ""))
            if product is None:
                skipped += 1
                continue
            updates.append((row["id"], map_remote_fields(product)))
        return await self._update_rows(updates, "refresh"), skipped

    async def update_all_fields(self) -> FieldUpdateResult:
        """Full overwrite of every mapped field on rows that still exist remotely."""
        try:
            remote = await self._fetch_remote()
            rows = await self.mirror.list_rows(self.project_id, ["id", EXTERNAL_ID_COLUMN])
        except RUN_ERRORS as e:
            logger.error("[SYNC] project=%s refresh failed: %s", self.project_id, e)
            return FieldUpdateResult(success=False, message=f"Product data update failed: {e}", errors=[str(e)])

        res, skipped = await self._refresh(remote, rows)
        return FieldUpdateResult(
            success=not res.errors,
            message=f"Updated {res.succeeded} products ({skipped} without WooCommerce counterpart skipped)",
            updated=res.succeeded,
            skipped=skipped,
            errors=res.errors,
        )

    async def comprehensive_sync(self) -> ComprehensiveSyncResult:
        """
        Four phases in fixed order. Orphan deletion is skipped (with a warning)
        when the remote catalog comes back empty.
        """
        stats = ComprehensiveStats()
        errors: List[str] = []
        warnings: List[str] = []
        phase = "analyze"
        started = time.monotonic()
        logger.info("[SYNC] project=%s comprehensive sync started (table=%s)", self.project_id, self.mirror.table)

        try:
            remote = await self._fetch_remote()
            local_rows = await self.mirror.list_rows(self.project_id, ["id", EXTERNAL_ID_COLUMN])
            stats.total_woo_products = len(remote)
            stats.total_tool_products = len(local_rows)

            phase = "delete"
            deleted_ids: set = set()
            if not remote:
                msg = (
                    f"WooCommerce returned no products; orphan deletion skipped "
                    f"({len(local_rows)} local products kept)"
                )
                warnings.append(msg)
                logger.warning("[SYNC] project=%s %s", self.project_id, msg)
            else:
                orphans = find_orphans(remote, local_rows)
                if orphans:
                    logger.info("[SYNC] project=%s deleting %s orphaned products", self.project_id, len(orphans))
                    res = await self._delete_rows(orphans)
                    stats.products_deleted = res.succeeded
                    errors.extend(res.errors)
                    deleted_ids = set(orphans)

            phase = "add"
            diff = diff_catalog(remote, {str(r.get(EXTERNAL_ID_COLUMN)) for r in local_rows if r.get(EXTERNAL_ID_COLUMN)})
            if diff.missing:
                res = await self._add_products(diff.missing)
                stats.new_products_added = res.succeeded
                errors.extend(res.errors)

            phase = "refresh"
            survivors = [r for r in local_rows if r["id"] not in deleted_ids]
            res, _ = await self._refresh(remote, survivors)
            stats.products_updated = res.succeeded
            errors.extend(res.errors)
        except RUN_ERRORS as e:
            logger.error("[SYNC] project=%s comprehensive sync failed during %s: %s", self.project_id, phase, e)
            errors.append(f"{phase}: {e}")
            stats.errors = len(errors)
            return ComprehensiveSyncResult(
                success=False,
                message=f"Comprehensive sync failed: {e}",
                stats=stats,
                errors=errors,
                warnings=warnings,
            )

        stats.errors = len(errors)
        changes = stats.new_products_added + stats.products_updated + stats.products_deleted
        message = (
            f"Comprehensive sync completed: {stats.new_products_added} added, "
            f"{stats.products_updated} updated, {stats.products_deleted} deleted"
            if changes
            else "All products are already up to date"
        )
        logger.info(
            "[SYNC] project=%s %s (%s errors, %.1fs)",
            self.project_id, message, stats.errors, time.monotonic() - started,
        )
        return ComprehensiveSyncResult(
            success=not errors,
            message=message,
            stats=stats,
            errors=errors,
            warnings=warnings,
        )
