# app/sync/components/mapping.py
# ===================================================
# Central WooCommerce product → mirror row mapping
# ===================================================
from __future__ import annotations

import uuid
from typing import Any, Dict, List

from app.sync.components.platforms import PLATFORM_COLUMNS, STOCK_COLUMN, extract_platform_data
from app.sync.components.price import parse_optional_price, parse_price
from app.woo.woo_models import RemoteProduct

SCOPE_COLUMN = "project_id"
EXTERNAL_ID_COLUMN = "website_id"
CONFLICT_COLUMNS = (SCOPE_COLUMN, EXTERNAL_ID_COLUMN)

# Columns written by a full refresh (everything the remote side owns)
REFRESH_FIELDS: List[str] = [
    "title",
    "price",
    "promotional_price",
    "sku",
    "image_url",
    "external_url",
    STOCK_COLUMN,
    *PLATFORM_COLUMNS,
]


def _first_image(remote: RemoteProduct) -> str:
    for img in remote.images:
        if img.src:
            return img.src.strip()
    return ""


def map_remote_fields(remote: RemoteProduct) -> Dict[str, Any]:
    """The REFRESH_FIELDS subset for one remote product (no scope, no id)."""
    platform = extract_platform_data(remote.meta_data)
    fields: Dict[str, Any] = {
        "title": remote.name.strip(),
        "price": parse_price(remote.regular_price or "0"),
        "promotional_price": parse_optional_price(remote.sale_price or "0"),
        "sku": remote.sku.strip(),
        "image_url": _first_image(remote),
        "external_url": remote.permalink.strip(),
    }
    fields.update(platform.to_columns())
    return fields


def map_remote_to_record(remote: RemoteProduct, project_id: Any) -> Dict[str, Any]:
    """Full insert/upsert row for the mirror, keyed by (project_id, website_id)."""
    row: Dict[str, Any] = {
        SCOPE_COLUMN: project_id,
        EXTERNAL_ID_COLUMN: remote.external_id,
    }
    row.update(map_remote_fields(remote))
    return row


def synthetic_external_id() -> str:
    return f"manual-{uuid.uuid4().hex[:12]}"


def ensure_external_id(row: Dict[str, Any]) -> Dict[str, Any]:
    """Rows without a Woo id still need a unique conflict key within the scope."""
    ext = row.get(EXTERNAL_ID_COLUMN)
    if ext is None or not str(ext).strip():
        row = {**row, EXTERNAL_ID_COLUMN: synthetic_external_id()}
    else:
        row = {**row, EXTERNAL_ID_COLUMN: str(ext).strip()}
    return row
