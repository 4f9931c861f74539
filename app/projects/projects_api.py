# app/projects/projects_api.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.models.projects import ProjectUpsert
from app.projects.project_store import delete_project, get_project, load_projects, upsert_project
from app.routes import verify_admin

router = APIRouter(prefix="/api/projects", tags=["Projects"], dependencies=[Depends(verify_admin)])


@router.get("")
async def list_projects():
    projects = sorted(load_projects().values(), key=lambda p: p.project_id)
    return JSONResponse(content={"projects": [p.public_dict() for p in projects]})


@router.get("/{project_id}")
async def read_project(project_id: int):
    project = get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="project not found")
    return JSONResponse(content=project.public_dict())


@router.put("/{project_id}")
async def save_project(project_id: int, body: ProjectUpsert):
    """Create or update; omitted fields keep their stored value."""
    project = upsert_project(project_id, body.model_dump(exclude_none=True))
    return JSONResponse(content={"ok": True, "project": project.public_dict()})


@router.delete("/{project_id}")
async def remove_project(project_id: int):
    if not delete_project(project_id):
        raise HTTPException(status_code=404, detail="project not found")
    return JSONResponse(content={"ok": True})
