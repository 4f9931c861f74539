#=======================================================================================
# app/routes.py
# FastAPI routes for WooCommerce → Supabase product reconciliation.
#
# ✅ Everything lives under /api/projects/{project_id}/sync/* and requires HTTP Basic
# ✅ Long runs are background jobs (202 + Location), one in-flight run per project
#
# Include with NO extra prefix in main_app.py:
#   from app.routes import router as api_router
#   app.include_router(api_router)
#=======================================================================================
from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
import uuid
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.config import settings
from app.mirror.supabase_mirror import SupabaseMirror
from app.models.projects import Project
from app.projects.project_store import get_project
from app.sync.run_log import list_runs
from app.sync.runner import run_operation
from app.woo.woocommerce import ping as woo_ping

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Sync API"])

# ---------------------------
# HTTP Basic (admin)
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------------------
# Shared dependencies
# ---------------------------
def require_active_project(project_id: int) -> Project:
    project = get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"project {project_id} not found")
    if not project.is_active:
        raise HTTPException(status_code=409, detail=f"project {project_id} is inactive")
    return project

def get_mirror_factory() -> Callable[[Project], SupabaseMirror]:
    """Overridable in tests (app.dependency_overrides)."""
    return SupabaseMirror.for_project

# ---------------------------
# Helpers
# ---------------------------
async def _safe_json(req: Request) -> Dict[str, Any]:
    """Best-effort JSON body parsing; an empty or broken body is {}."""
    try:
        raw = (await req.body()).decode("utf-8", "ignore")
    except RuntimeError:
        return {}
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

def _get_bool(payload: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for k in keys:
        if k in payload:
            return bool(payload.get(k))
    return default

def _now_ts() -> int:
    return int(time.time())

# ---------------------------
# Background job store (in-memory)
# ---------------------------
_JOBS: Dict[str, Dict[str, Any]] = {}
_JOBS_LOCK = asyncio.Lock()
_JOBS_TTL_SECONDS = 60 * 60  # keep finished jobs 1 hour
_ACTIVE: Dict[int, str] = {}  # project_id → job id of the run in flight

async def _cleanup_jobs_now():
    """Remove finished jobs older than TTL."""
    cutoff = _now_ts() - _JOBS_TTL_SECONDS
    async with _JOBS_LOCK:
        to_del = [jid for jid, rec in _JOBS.items()
                  if rec.get("finished") and rec.get("finished") < cutoff]
        for jid in to_del:
            _JOBS.pop(jid, None)

async def _claim_project(project_id: int, job_id: str) -> None:
    async with _JOBS_LOCK:
        running = _ACTIVE.get(project_id)
        if running:
            raise HTTPException(
                status_code=409,
                detail={"reason": "sync_in_progress", "job_id": running},
            )
        _ACTIVE[project_id] = job_id

async def _release_project(project_id: int, job_id: str) -> None:
    async with _JOBS_LOCK:
        if _ACTIVE.get(project_id) == job_id:
            _ACTIVE.pop(project_id, None)

def _progress_recorder(job_id: str):
    async def _record(event: dict):
        async with _JOBS_LOCK:
            rec = _JOBS.get(job_id)
            if rec is not None:
                rec["progress"] = event
    return _record

async def _run_job(job_id: str, project: Project, operation: str, mirror_factory) -> None:
    """Background runner for one reconciliation operation."""
    logger.info("[JOB][RUN] Job %s starting (project=%s, operation=%s)", job_id, project.project_id, operation)
    async with _JOBS_LOCK:
        _JOBS[job_id].update({"status": "running", "started": _now_ts()})

    mirror = None
    try:
        mirror = mirror_factory(project)
        result = await run_operation(
            project, operation,
            on_progress=_progress_recorder(job_id),
            job_id=job_id,
            mirror=mirror,
        )
        async with _JOBS_LOCK:
            _JOBS[job_id].update({"status": "done", "finished": _now_ts(), "result": result})
        logger.info("[JOB][COMPLETE] Job %s finished (success=%s)", job_id, result.get("success"))
    except Exception as e:
        async with _JOBS_LOCK:
            _JOBS[job_id].update({"status": "error", "finished": _now_ts(), "error": str(e)})
        logger.error("[JOB][ERROR] Job %s failed: %s", job_id, e, exc_info=True)
    finally:
        if mirror is not None:
            await mirror.aclose()
        await _release_project(project.project_id, job_id)

    await _cleanup_jobs_now()

# ----------------------------------------------------------------------
# Sync operations
# ----------------------------------------------------------------------

@router.get("/projects/{project_id}/sync/check", dependencies=[Depends(verify_admin)])
async def api_sync_check(
    project: Project = Depends(require_active_project),
    mirror_factory=Depends(get_mirror_factory),
):
    """Read-only comparison: local/remote counts and the missing list."""
    mirror = mirror_factory(project)
    try:
        result = await run_operation(project, "check", mirror=mirror)
    finally:
        await mirror.aclose()
    return JSONResponse(content=result)

async def _start_operation(request: Request, project: Project, operation: str, mirror_factory):
    """
    Body: { "blocking": bool (default False), "confirm": bool (default True) }

    Default is non-blocking: 202 + job_id, poll /sync/status/{job_id}.
    A run already in flight for the project → 409.
    """
    payload = await _safe_json(request)
    if not _get_bool(payload, "confirm", default=True):
        raise HTTPException(status_code=400, detail="run not confirmed")
    blocking = _get_bool(payload, "blocking", default=False)

    job_id = uuid.uuid4().hex
    await _claim_project(project.project_id, job_id)

    if blocking:
        logger.info("[JOB][SYNC] blocking %s run for project %s", operation, project.project_id)
        mirror = None
        try:
            mirror = mirror_factory(project)
            result = await run_operation(project, operation, job_id=job_id, mirror=mirror)
        finally:
            if mirror is not None:
                await mirror.aclose()
            await _release_project(project.project_id, job_id)
        return JSONResponse(content=result)

    async with _JOBS_LOCK:
        _JOBS[job_id] = {
            "id": job_id,
            "project_id": project.project_id,
            "operation": operation,
            "status": "queued",
            "queued": _now_ts(),
            "started": None,
            "finished": None,
            "progress": None,
        }
    logger.info("[JOB][REGISTER] job %s: %s for project %s", job_id, operation, project.project_id)
    asyncio.create_task(_run_job(job_id, project, operation, mirror_factory))

    return JSONResponse(
        status_code=202,
        content={"job_id": job_id, "status": "queued", "operation": operation},
        headers={"Location": f"/api/projects/{project.project_id}/sync/status/{job_id}"},
    )

@router.post("/projects/{project_id}/sync/missing", dependencies=[Depends(verify_admin)])
async def api_sync_missing(request: Request, project: Project = Depends(require_active_project),
                           mirror_factory=Depends(get_mirror_factory)):
    """Add WooCommerce products the mirror does not have yet."""
    return await _start_operation(request, project, "missing", mirror_factory)

@router.post("/projects/{project_id}/sync/stock", dependencies=[Depends(verify_admin)])
async def api_sync_stock(request: Request, project: Project = Depends(require_active_project),
                         mirror_factory=Depends(get_mirror_factory)):
    """Update only the out-of-stock flag."""
    return await _start_operation(request, project, "stock", mirror_factory)

@router.post("/projects/{project_id}/sync/refresh", dependencies=[Depends(verify_admin)])
async def api_sync_refresh(request: Request, project: Project = Depends(require_active_project),
                           mirror_factory=Depends(get_mirror_factory)):
    """Overwrite all mapped fields on rows that still exist in WooCommerce."""
    return await _start_operation(request, project, "refresh", mirror_factory)

@router.post("/projects/{project_id}/sync/full", dependencies=[Depends(verify_admin)])
async def api_sync_full(request: Request, project: Project = Depends(require_active_project),
                        mirror_factory=Depends(get_mirror_factory)):
    """Comprehensive sync: delete orphans, add missing, refresh survivors."""
    return await _start_operation(request, project, "full", mirror_factory)

# ----------------------------------------------------------------------
# Jobs + history
# ----------------------------------------------------------------------

@router.get("/projects/{project_id}/sync/jobs", dependencies=[Depends(verify_admin)])
async def api_sync_jobs(project_id: int):
    async with _JOBS_LOCK:
        jobs = [dict(j) for j in _JOBS.values() if j.get("project_id") == project_id]
        active = _ACTIVE.get(project_id)
    jobs.sort(key=lambda j: j.get("queued") or 0, reverse=True)
    return JSONResponse(content={"jobs": jobs, "active_job_id": active})

@router.get("/projects/{project_id}/sync/status/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_status(project_id: int, job_id: str):
    """Poll a background job (result is present once status == done)."""
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id)
        rec = dict(rec) if rec else None
    if not rec or rec.get("project_id") != project_id:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(content=rec)

@router.get("/projects/{project_id}/sync/runs", dependencies=[Depends(verify_admin)])
async def api_sync_runs(project_id: int, limit: int = Query(50, ge=1, le=500)):
    """Recorded runs, newest first."""
    return JSONResponse(content={"runs": await list_runs(project_id, limit=limit)})

# ----------------------------------------------------------------------
# WooCommerce connection test
# ----------------------------------------------------------------------

@router.get("/projects/{project_id}/woo/ping", dependencies=[Depends(verify_admin)])
async def api_woo_ping(project: Project = Depends(require_active_project)):
    return JSONResponse(content=await woo_ping(project))

# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------

@router.get("/health")
async def api_health():
    """Liveness + which backends are configured (no outbound calls)."""
    supabase_ok = bool(settings.SUPABASE_URL and settings.SUPABASE_KEY)
    return JSONResponse(content={
        "ok": True,
        "supabase": {"configured": supabase_ok},
        "woocommerce": {"default_store_configured": bool(settings.WC_BASE_URL)},
    })
