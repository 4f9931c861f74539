# app/sync/runner.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from app.mirror.supabase_mirror import SupabaseMirror
from app.models.projects import Project
from app.sync.reconcile import ProductReconciler
from app.sync.run_log import record_run

logger = logging.getLogger("uvicorn.error")

# public operation name → ProductReconciler method
OPERATIONS: Dict[str, str] = {
    "check": "check_only",
    "missing": "sync_missing",
    "stock": "update_stock_only",
    "refresh": "update_all_fields",
    "full": "comprehensive_sync",
}


async def run_operation(
    project: Project,
    operation: str,
    *,
    on_progress: Optional[Callable[[dict], Any]] = None,
    job_id: str | None = None,
    mirror: SupabaseMirror | None = None,
    wc_client: httpx.AsyncClient | None = None,
    record: bool = True,
) -> Dict[str, Any]:
    """Run one reconciliation operation for a project and log it to sync_runs."""
    method_name = OPERATIONS.get(operation)
    if method_name is None:
        raise ValueError(f"Unknown sync operation: {operation}")

    own_mirror = mirror is None
    mirror = mirror or SupabaseMirror.for_project(project)
    started = datetime.now(timezone.utc)
    try:
        reconciler = ProductReconciler(project, mirror, wc_client=wc_client, on_progress=on_progress)
        result = await getattr(reconciler, method_name)()
    finally:
        if own_mirror:
            await mirror.aclose()
    finished = datetime.now(timezone.utc)

    report = result.model_dump()
    logger.info(
        "[SYNC] project=%s %s finished in %.1fs success=%s",
        project.project_id, operation, (finished - started).total_seconds(), report.get("success"),
    )
    if record:
        await record_run(
            project.project_id,
            operation,
            report,
            started_at=started.replace(tzinfo=None),
            finished_at=finished.replace(tzinfo=None),
            job_id=job_id,
        )
    return report
