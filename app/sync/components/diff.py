# app/sync/components/diff.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

from app.sync.components.mapping import EXTERNAL_ID_COLUMN
from app.woo.woo_models import RemoteProduct


@dataclass
class CatalogDiff:
    missing: List[RemoteProduct] = field(default_factory=list)
    present: List[RemoteProduct] = field(default_factory=list)
    all_remote: List[RemoteProduct] = field(default_factory=list)
    orphaned_local_ids: List[Any] = field(default_factory=list)


def remote_ids(remote: Iterable[RemoteProduct]) -> Set[str]:
    return {p.external_id for p in remote}


def diff_catalog(remote: List[RemoteProduct], local_keys: Set[str]) -> CatalogDiff:
    """
    Split the remote catalog into products the mirror lacks and products it
    already has. Orphans need row ids, so they come from find_orphans().
    """
    keys = {str(k) for k in local_keys}
    out = CatalogDiff(all_remote=list(remote))
    for p in remote:
        (out.present if p.external_id in keys else out.missing).append(p)
    return out


def find_orphans(remote: Iterable[RemoteProduct], local_rows: Iterable[Dict[str, Any]]) -> List[Any]:
    """Internal ids of local rows whose external id is gone from the remote catalog."""
    ids = remote_ids(remote)
    return [
        row["id"]
        for row in local_rows
        if str(row.get(EXTERNAL_ID_COLUMN) or "") not in ids
    ]


def index_by_external_id(remote: Iterable[RemoteProduct]) -> Dict[str, RemoteProduct]:
    return {p.external_id: p for p in remote}
