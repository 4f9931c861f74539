# app/models/projects.py
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings


class Project(BaseModel):
    """One WooCommerce store bound to one slice (project_id) of the mirror table."""
    model_config = ConfigDict(extra="allow")

    project_id: int = Field(..., description="Scope id stored on every mirror row")
    name: str = ""
    woocommerce_base_url: str = ""
    woocommerce_consumer_key: str = ""
    woocommerce_consumer_secret: str = ""
    products_table: str = ""
    is_active: bool = True
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def table(self) -> str:
        return (
            self.products_table
            or settings.PROJECT_TABLE_MAP.get(str(self.project_id))
            or settings.PRODUCTS_TABLE
        )

    @property
    def wc_base_url(self) -> str:
        return (self.woocommerce_base_url or settings.WC_BASE_URL).rstrip("/")

    @property
    def wc_auth(self) -> tuple[str, str]:
        return (
            self.woocommerce_consumer_key or settings.WC_API_KEY,
            self.woocommerce_consumer_secret or settings.WC_API_SECRET,
        )

    def public_dict(self) -> Dict[str, Any]:
        """Serializable view with credentials masked."""
        data = self.model_dump()
        for k in ("woocommerce_consumer_key", "woocommerce_consumer_secret"):
            v = data.get(k) or ""
            data[k] = (v[:6] + "…") if v else ""
        data["products_table"] = self.table
        return data


class ProjectUpsert(BaseModel):
    name: Optional[str] = None
    woocommerce_base_url: Optional[str] = None
    woocommerce_consumer_key: Optional[str] = None
    woocommerce_consumer_secret: Optional[str] = None
    products_table: Optional[str] = None
    is_active: Optional[bool] = None
    options: Optional[Dict[str, Any]] = None
