# app/models/products.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.sync.components.platforms import Platform


class ProductFilter(BaseModel):
    search: Optional[str] = None
    platform: Optional[Platform] = None
    stock_status: Optional[Literal["instock", "outofstock"]] = None
    recently_updated: bool = False
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=1000)


class ProductUpdate(BaseModel):
    """Editable mirror columns. Unset fields are left alone."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    promotional_price: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    image_url: Optional[str] = None
    external_url: Optional[str] = None
    het_hang: Optional[bool] = None
    link_shopee: Optional[str] = None
    gia_shopee: Optional[int] = None
    link_tiktok: Optional[str] = None
    gia_tiktok: Optional[int] = None
    link_lazada: Optional[str] = None
    gia_lazada: Optional[int] = None
    link_dmx: Optional[str] = None
    gia_dmx: Optional[int] = None
    link_tiki: Optional[str] = None
    gia_tiki: Optional[int] = None


class ProductEditRequest(BaseModel):
    changes: ProductUpdate = Field(default_factory=ProductUpdate)
    auto_price: bool = False
    push_to_woo: bool = False


class BulkUploadRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
