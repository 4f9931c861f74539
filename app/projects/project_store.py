# app/projects/project_store.py
from __future__ import annotations
import json, time
from pathlib import Path
from typing import Any, Dict, Optional

from app.config import settings
from app.models.projects import Project

def _default_path() -> Path:
    return Path(settings.PROJECTS_PATH)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _blank() -> Dict[str, Any]:
    return {"version": 1, "updated": _now_iso(), "projects": {}}


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return _blank()
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        return _blank()


def _save_raw(path: Path, obj: Dict[str, Any]) -> None:
    obj = dict(obj or {})
    obj["updated"] = _now_iso()
    _ensure_parent(path)
    _atomic_write(path, json.dumps(obj, ensure_ascii=False, indent=2))

# -------- Public API --------

def load_projects(path: Path | None = None) -> Dict[str, Project]:
    path = path or _default_path()
    raw = _load_raw(path)
    out: Dict[str, Project] = {}
    for k, v in (raw.get("projects") or {}).items():
        try:
            out[str(k)] = Project.model_validate({"project_id": int(k), **(v or {})})
        except ValueError:
            continue
    return out


def get_project(project_id: int, path: Path | None = None) -> Optional[Project]:
    return load_projects(path).get(str(int(project_id)))


def upsert_project(project_id: int, fields: Dict[str, Any], path: Path | None = None) -> Project:
    path = path or _default_path()
    raw = _load_raw(path)
    projects = raw.setdefault("projects", {})
    key = str(int(project_id))
    current = dict(projects.get(key) or {})
    current.update({k: v for k, v in (fields or {}).items() if v is not None})
    current.pop("project_id", None)
    project = Project.model_validate({"project_id": int(project_id), **current})
    projects[key] = project.model_dump(exclude={"project_id"})
    _save_raw(path, raw)
    return project


def delete_project(project_id: int, path: Path | None = None) -> bool:
    path = path or _default_path()
    raw = _load_raw(path)
    projects = raw.get("projects") or {}
    key = str(int(project_id))
    if key in projects:
        projects.pop(key, None)
        _save_raw(path, raw)
        return True
    return False
