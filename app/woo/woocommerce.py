#==========================================================================================
# app/woo/woocommerce.py
# WooCommerce REST v3 interface for one project's store.
# Catalog fetch (paginated), single product read, connection test, edit push-back.
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.config import settings
from app.errors import WooFetchError
from app.logging_filters import clean_error_text
from app.models.projects import Project
from app.sync.components.platforms import Platform
from app.sync.components.price import format_price
from app.sync.components.util import maybe_await
from app.woo.woo_models import RemoteProduct

logger = logging.getLogger("uvicorn.error")

WC_API_PATH = "/wp-json/wc/v3"

PageCallback = Callable[[int, int, int], Any]  # (page, page_count, total_so_far)


@asynccontextmanager
async def _wc_client(project: Project, client: httpx.AsyncClient | None = None):
    """Yield the caller's client, or a short-lived one bound to the project's store."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        base_url=project.wc_base_url + WC_API_PATH,
        auth=project.wc_auth,
        timeout=settings.WC_TIMEOUT,
        verify=settings.WC_VERIFY_SSL,
        headers={"Content-Type": "application/json"},
    ) as c:
        yield c


def build_wc_client(project: Project, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Long-lived client for a whole reconciliation run (caller closes it)."""
    return httpx.AsyncClient(
        base_url=project.wc_base_url + WC_API_PATH,
        auth=project.wc_auth,
        timeout=settings.WC_TIMEOUT,
        verify=settings.WC_VERIFY_SSL,
        headers={"Content-Type": "application/json"},
        transport=transport,
    )

# ---- Products ----

async def fetch_all_products(
    project: Project,
    *,
    client: httpx.AsyncClient | None = None,
    page_size: int | None = None,
    page_delay: float | None = None,
    on_page: Optional[PageCallback] = None,
) -> List[RemoteProduct]:
    """
    Fetch every published product, page by page, until an empty or short page.
    Any failing page aborts the whole fetch with WooFetchError (no partial catalog).
    """
    per_page = page_size or settings.WC_PAGE_SIZE
    delay = settings.WC_PAGE_DELAY if page_delay is None else page_delay
    products: List[RemoteProduct] = []
    page = 1

    async with _wc_client(project, client) as wc:
        while True:
            try:
                resp = await wc.get(
                    "/products",
                    params={"page": page, "per_page": per_page, "status": "publish"},
                )
            except httpx.HTTPError as e:
                raise WooFetchError(f"Failed to fetch WooCommerce products (page {page}): {e}", page=page) from e

            if resp.status_code != 200:
                raise WooFetchError(
                    f"Failed to fetch WooCommerce products (page {page}): "
                    f"HTTP {resp.status_code} {clean_error_text(resp.text)}",
                    page=page,
                    status_code=resp.status_code,
                )
            try:
                batch = resp.json()
            except ValueError as e:
                raise WooFetchError(f"Invalid JSON from WooCommerce (page {page})", page=page) from e
            if not isinstance(batch, list):
                raise WooFetchError(f"Unexpected WooCommerce payload on page {page}", page=page)

            if not batch:
                break

            for raw in batch:
                try:
                    products.append(RemoteProduct.model_validate(raw))
                except ValidationError as e:
                    pid = raw.get("id") if isinstance(raw, dict) else None
                    raise WooFetchError(
                        f"Invalid WooCommerce product {pid} on page {page}: {e.errors()[:1]}",
                        page=page,
                    ) from e

            logger.info("[WOO] page %s: %s products (total %s)", page, len(batch), len(products))
            if on_page is not None:
                await maybe_await(on_page(page, len(batch), len(products)))

            if len(batch) < per_page:
                break
            page += 1
            if delay:
                await asyncio.sleep(delay)

    return products


async def fetch_product(project: Project, product_id: int | str, *, client: httpx.AsyncClient | None = None) -> Optional[RemoteProduct]:
    """Single product by WooCommerce id; None when the store says 404."""
    async with _wc_client(project, client) as wc:
        try:
            resp = await wc.get(f"/products/{product_id}")
        except httpx.HTTPError as e:
            raise WooFetchError(f"Failed to fetch WooCommerce product {product_id}: {e}") from e
    if resp.status_code == 404:
        return None
    if resp.status_code != 200:
        raise WooFetchError(
            f"Failed to fetch WooCommerce product {product_id}: HTTP {resp.status_code}",
            status_code=resp.status_code,
        )
    return RemoteProduct.model_validate(resp.json())


async def ping(project: Project, *, client: httpx.AsyncClient | None = None) -> Dict[str, Any]:
    """Connection test: credentials + reachability + a one-product sample."""
    result: Dict[str, Any] = {"ok": False, "status": None, "elapsed_ms": None, "sample_count": 0, "error": None}
    if not project.wc_base_url:
        result["error"] = "WooCommerce base URL not configured"
        return result
    started = time.monotonic()
    async with _wc_client(project, client) as wc:
        try:
            resp = await wc.get("/products", params={"per_page": 1, "status": "publish"})
        except httpx.HTTPError as e:
            result["error"] = str(e)
            return result
    result["elapsed_ms"] = int((time.monotonic() - started) * 1000)
    result["status"] = resp.status_code
    if resp.status_code == 200:
        try:
            body = resp.json()
        except ValueError:
            body = None
        result["ok"] = isinstance(body, list)
        result["sample_count"] = len(body) if isinstance(body, list) else 0
        if not result["ok"]:
            result["error"] = "Unexpected response shape"
    elif resp.status_code in (401, 403):
        result["error"] = "Authentication failed (check consumer key/secret)"
    else:
        result["error"] = clean_error_text(resp.text)
    return result

# ---- Edit push-back ----

_BUTTON_TEXT = (
    (("shopee.vn", "shopee.com"), "Mua tại Shopee"),
    (("tiktok.com", "tiktokshop"), "Mua tại TikTok"),
    (("lazada.vn", "lazada.com"), "Mua tại Lazada"),
    (("dienmayxanh.com", "dmx"), "Mua tại Điện máy xanh"),
    (("tiki.vn", "tiki.com"), "Mua tại Tiki"),
)


def button_text_for(url: str) -> str:
    u = (url or "").lower()
    for needles, text in _BUTTON_TEXT:
        if any(n in u for n in needles):
            return text
    return "Mua ngay"


def map_record_to_wc_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Mirror row → WooCommerce product update body. Only populated fields are sent;
    platform prices go back as vi-VN formatted text in meta_data.
    """
    payload: Dict[str, Any] = {}
    ext_url = (record.get("external_url") or "").strip()
    if ext_url:
        payload["type"] = "external"
        payload["external_url"] = ext_url
        payload["button_text"] = button_text_for(ext_url)
    if record.get("price"):
        payload["regular_price"] = str(record["price"])
    if record.get("promotional_price"):
        payload["sale_price"] = str(record["promotional_price"])
    if record.get("sku"):
        payload["sku"] = record["sku"]

    meta: List[Dict[str, str]] = []
    for p in Platform:
        link = (record.get(p.link_column) or "").strip()
        if link:
            meta.append({"key": p.link_column, "value": link})
        price = record.get(p.price_column)
        if price:
            meta.append({"key": p.price_column, "value": format_price(price)})
    if meta:
        payload["meta_data"] = meta
    return payload


async def push_product(project: Project, record: Dict[str, Any], *, client: httpx.AsyncClient | None = None) -> Dict[str, Any]:
    """PUT an edited mirror row back to its WooCommerce product."""
    product_id = record.get("website_id")
    if not product_id or not str(product_id).isdigit():
        return {"ok": False, "status_code": None, "error": "Record has no WooCommerce product id"}
    payload = map_record_to_wc_payload(record)
    async with _wc_client(project, client) as wc:
        try:
            resp = await wc.put(f"/products/{product_id}", json=payload)
        except httpx.HTTPError as e:
            logger.error("[WOO] push of product %s failed: %s", product_id, e)
            return {"ok": False, "status_code": None, "error": str(e)}
    ok = resp.status_code == 200
    if not ok:
        logger.warning("[WOO] push of product %s rejected: HTTP %s", product_id, resp.status_code)
    return {
        "ok": ok,
        "status_code": resp.status_code,
        "error": None if ok else clean_error_text(resp.text),
    }
