# app/sync/run_log.py
# History of reconciliation runs (the "update logs" page)
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.db import get_sessionmaker
from app.models.sync_runs import SyncRun

logger = logging.getLogger("uvicorn.error")


def _to_dict(run: SyncRun) -> Dict[str, Any]:
    try:
        report = json.loads(run.report or "{}")
    except ValueError:
        report = {}
    return {
        "id": run.id,
        "project_id": run.project_id,
        "operation": run.operation,
        "job_id": run.job_id,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "success": run.success,
        "message": run.message,
        "error_count": run.error_count,
        "report": report,
    }


async def record_run(
    project_id: int,
    operation: str,
    report: Dict[str, Any],
    *,
    started_at: datetime,
    finished_at: datetime,
    job_id: str | None = None,
) -> Optional[int]:
    """Best effort: a failed insert is logged and never affects the run itself."""
    errors = report.get("errors") or []
    run = SyncRun(
        project_id=project_id,
        operation=operation,
        started_at=started_at,
        finished_at=finished_at,
        success=bool(report.get("success", not errors)),
        message=str(report.get("message") or ""),
        report=json.dumps(report, default=str, ensure_ascii=False),
        error_count=len(errors),
        job_id=job_id,
    )
    try:
        async with get_sessionmaker()() as session:
            session.add(run)
            await session.commit()
            return run.id
    except (SQLAlchemyError, OSError) as e:
        logger.warning("[RUNLOG] could not record %s run for project %s: %s", operation, project_id, e)
        return None


async def list_runs(project_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    async with get_sessionmaker()() as session:
        rows = (
            await session.execute(
                select(SyncRun)
                .where(SyncRun.project_id == project_id)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            )
        ).scalars().all()
    return [_to_dict(r) for r in rows]
