# app/woo/woo_models.py
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _scalar_to_str(v: Any) -> Any:
    """None becomes "", numbers become their text; anything else is left for validation."""
    if v is None:
        return ""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class MetadataEntry(BaseModel):
    """One WooCommerce custom field ({key, value}); values may be any JSON type."""
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    key: str = ""
    value: Any = None

    @field_validator("key", mode="before")
    @classmethod
    def _key_to_str(cls, v):
        return _scalar_to_str(v)


class RemoteImage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    src: str = ""

    @field_validator("src", mode="before")
    @classmethod
    def _src_to_str(cls, v):
        return _scalar_to_str(v)


class RemoteCategory(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _name_to_str(cls, v):
        return _scalar_to_str(v)


class RemoteProduct(BaseModel):
    """
    Product as returned by GET /wp-json/wc/v3/products.
    Only the fields the mirror uses are typed; everything else rides along.
    """
    model_config = ConfigDict(extra="allow")

    id: int = Field(..., description="WooCommerce product ID (external id)")
    name: str = ""
    sku: str = ""
    permalink: str = ""
    regular_price: Optional[str] = ""
    sale_price: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    images: List[RemoteImage] = Field(default_factory=list)
    categories: List[RemoteCategory] = Field(default_factory=list)
    meta_data: List[MetadataEntry] = Field(default_factory=list)

    @field_validator("name", "sku", "permalink", mode="before")
    @classmethod
    def _none_to_blank(cls, v):
        return _scalar_to_str(v)

    @field_validator("regular_price", "sale_price", mode="before")
    @classmethod
    def _price_to_str(cls, v):
        # Woo sends strings, but some plugins emit numbers
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("images", "categories", "meta_data", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []

    @property
    def external_id(self) -> str:
        return str(self.id)


class WooWebhookProduct(BaseModel):
    """Product webhook body; deletes only carry the id."""
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = Field(None, description="WooCommerce product ID")
