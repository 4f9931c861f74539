# app/products_api.py
# Product management for one project's mirror slice (list/edit/delete/bulk upload)
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from app.errors import MirrorError
from app.mirror.supabase_mirror import SupabaseMirror
from app.models.products import BulkUploadRequest, ProductEditRequest, ProductFilter
from app.models.projects import Project
from app.routes import get_mirror_factory, require_active_project, verify_admin
from app.sync.bulk_upload import upload_rows
from app.sync.components.auto_price import apply_auto_price_if_needed
from app.sync.components.platforms import Platform
from app.woo.woocommerce import push_product

logger = logging.getLogger("uvicorn.error")

router = APIRouter(
    prefix="/api/projects/{project_id}/products",
    tags=["Products"],
    dependencies=[Depends(verify_admin)],
)


async def project_mirror(
    project: Project = Depends(require_active_project),
    mirror_factory=Depends(get_mirror_factory),
):
    mirror = mirror_factory(project)
    try:
        yield mirror
    finally:
        await mirror.aclose()


def _mirror_failure(e: MirrorError) -> HTTPException:
    logger.error("[MIRROR] %s", e)
    return HTTPException(status_code=502, detail=str(e))


@router.get("")
async def list_products(
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
    search: Optional[str] = None,
    platform: Optional[Platform] = None,
    stock_status: Optional[Literal["instock", "outofstock"]] = None,
    recently_updated: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=1000),
):
    filt = ProductFilter(
        search=search,
        platform=platform,
        stock_status=stock_status,
        recently_updated=recently_updated,
        page=page,
        page_size=page_size,
    )
    try:
        items, total = await mirror.list_products(project.project_id, filt)
    except MirrorError as e:
        raise _mirror_failure(e)
    return JSONResponse(content={"items": items, "total": total, "page": page, "page_size": page_size})


@router.get("/stats")
async def product_stats(
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
):
    try:
        return JSONResponse(content=await mirror.product_stats(project.project_id))
    except MirrorError as e:
        raise _mirror_failure(e)


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
):
    try:
        row = await mirror.get_product(project.project_id, product_id)
    except MirrorError as e:
        raise _mirror_failure(e)
    if row is None:
        raise HTTPException(status_code=404, detail="product not found")
    return JSONResponse(content=row)


@router.patch("/{product_id}")
async def edit_product(
    product_id: int,
    body: ProductEditRequest,
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
):
    """
    Apply edits to one mirror row.
    auto_price: fill price/promotional_price/external_url from platform prices when price is empty.
    push_to_woo: also write the edited row back to WooCommerce.
    """
    try:
        current = await mirror.get_product(project.project_id, product_id)
    except MirrorError as e:
        raise _mirror_failure(e)
    if current is None:
        raise HTTPException(status_code=404, detail="product not found")

    changes = body.changes.model_dump(exclude_unset=True)
    merged = {**current, **changes}
    auto = {"applied": False, "summary": None}
    if body.auto_price:
        merged, applied, summary = apply_auto_price_if_needed(merged)
        auto = {"applied": applied, "summary": summary}
        if applied:
            for k in ("price", "promotional_price", "external_url"):
                changes[k] = merged.get(k)

    if changes:
        res = await mirror.update_by_id(project.project_id, product_id, changes)
        if not res.ok:
            raise HTTPException(status_code=502, detail=res.error or "update rejected")

    woo = None
    if body.push_to_woo:
        woo = await push_product(project, merged)

    logger.info("[PRODUCTS] project=%s edited product %s fields=%s", project.project_id, product_id, sorted(changes))
    return JSONResponse(content={"ok": True, "product": merged, "auto_price": auto, "woo": woo})


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
):
    try:
        existing = await mirror.get_product(project.project_id, product_id)
    except MirrorError as e:
        raise _mirror_failure(e)
    if existing is None:
        raise HTTPException(status_code=404, detail="product not found")
    if not await mirror.delete_product(project.project_id, product_id):
        raise HTTPException(status_code=502, detail="delete failed")
    return JSONResponse(content={"ok": True, "deleted": product_id})


@router.post("/bulk")
async def bulk_upload(
    body: BulkUploadRequest,
    project: Project = Depends(require_active_project),
    mirror: SupabaseMirror = Depends(project_mirror),
):
    report = await upload_rows(mirror, project.project_id, body.rows)
    return JSONResponse(content={"ok": not report.errors, **asdict(report)})
