from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class CheckReport(BaseModel):
    local_count: int = 0
    remote_count: int = 0
    missing_count: int = 0
    missing_list: List[Dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    errors: List[str] = Field(default_factory=list)


class SyncReport(BaseModel):
    tool_products: int = 0
    woo_products: int = 0
    missing_products: int = 0
    newly_added: int = 0
    errors: List[str] = Field(default_factory=list)
    missing_products_list: List[Dict[str, Any]] = Field(default_factory=list)
    success: bool = True


class StockStats(BaseModel):
    instock: int = 0
    outofstock: int = 0
    total: int = 0


class StockUpdateResult(BaseModel):
    success: bool = True
    message: str = ""
    before_stats: StockStats = Field(default_factory=StockStats)
    after_stats: StockStats = Field(default_factory=StockStats)
    updated: int = 0
    errors: List[str] = Field(default_factory=list)


class FieldUpdateResult(BaseModel):
    success: bool = True
    message: str = ""
    updated: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class ComprehensiveStats(BaseModel):
    total_woo_products: int = 0
    total_tool_products: int = 0
    new_products_added: int = 0
    products_updated: int = 0
    products_deleted: int = 0
    errors: int = 0


class ComprehensiveSyncResult(BaseModel):
    success: bool = True
    message: str = ""
    stats: ComprehensiveStats = Field(default_factory=ComprehensiveStats)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
