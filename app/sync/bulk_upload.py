# app/sync/bulk_upload.py
# Spreadsheet-style rows → mirror rows (bulk import into one project)
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from app.mirror.supabase_mirror import SupabaseMirror
from app.sync.components.batch import BatchReport
from app.sync.components.mapping import EXTERNAL_ID_COLUMN
from app.sync.components.platforms import STOCK_COLUMN, Platform, stock_flag_from_value
from app.sync.components.price import parse_optional_price, parse_price

logger = logging.getLogger("uvicorn.error")

# camelCase headers seen in exported sheets
_ALIASES = {
    "websiteId": EXTERNAL_ID_COLUMN,
    "promotionalPrice": "promotional_price",
    "externalUrl": "external_url",
    "imageUrl": "image_url",
}
for _p in Platform:
    _ALIASES[f"link{_p.value.capitalize()}"] = _p.link_column
    _ALIASES[f"gia{_p.value.capitalize()}"] = _p.price_column

_TEXT_COLUMNS = ("title", "sku", "image_url", "external_url")


def normalize_upload_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Keep known columns only; parse prices, trim links, coerce the stock flag."""
    src = {_ALIASES.get(k, k): v for k, v in raw.items()}
    row: Dict[str, Any] = {}

    ext = src.get(EXTERNAL_ID_COLUMN)
    if ext is not None and str(ext).strip():
        row[EXTERNAL_ID_COLUMN] = str(ext).strip()
    for col in _TEXT_COLUMNS:
        if col in src:
            row[col] = str(src[col] or "").strip()
    if "price" in src:
        row["price"] = parse_price(src["price"])
    if "promotional_price" in src:
        row["promotional_price"] = parse_optional_price(src["promotional_price"])
    for p in Platform:
        if p.link_column in src:
            row[p.link_column] = str(src[p.link_column] or "").strip()
        if p.price_column in src:
            row[p.price_column] = parse_optional_price(src[p.price_column])
    if STOCK_COLUMN in src:
        row[STOCK_COLUMN] = stock_flag_from_value(src[STOCK_COLUMN])
    return row


async def upload_rows(
    mirror: SupabaseMirror,
    project_id: Any,
    rows: Iterable[Dict[str, Any]],
    *,
    chunk_delay: float | None = None,
) -> BatchReport:
    prepared: List[Dict[str, Any]] = [normalize_upload_row(r) for r in rows]
    prepared = [r for r in prepared if r]
    report = await mirror.insert_rows(project_id, prepared, chunk_delay=chunk_delay)
    logger.info(
        "[UPLOAD] project=%s uploaded %s/%s rows (%s failed)",
        project_id, report.succeeded, len(prepared), report.failed,
    )
    return report
