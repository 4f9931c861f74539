# app/sync/components/platforms.py
# ==========================================================
# Marketplace link/price + stock flag extraction from Woo meta_data
# ==========================================================
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Tuple

from app.config import settings
from app.sync.components.price import parse_optional_price


class Platform(str, Enum):
    SHOPEE = "shopee"
    TIKTOK = "tiktok"
    LAZADA = "lazada"
    DMX = "dmx"
    TIKI = "tiki"

    @property
    def link_column(self) -> str:
        return f"link_{self.value}"

    @property
    def price_column(self) -> str:
        return f"gia_{self.value}"


STOCK_COLUMN = "het_hang"

# Closed set of recognized meta keys → (platform, slot). Anything else is ignored.
_META_KEYS: Dict[str, Tuple[Platform, str]] = {}
for _p in Platform:
    _META_KEYS[_p.link_column] = (_p, "link")
    _META_KEYS[_p.price_column] = (_p, "price")

PLATFORM_COLUMNS: Tuple[str, ...] = tuple(
    col for p in Platform for col in (p.link_column, p.price_column)
)


@dataclass
class PlatformListing:
    link: str = ""
    price: int | None = None


@dataclass
class PlatformData:
    listings: Dict[Platform, PlatformListing] = field(
        default_factory=lambda: {p: PlatformListing() for p in Platform}
    )
    out_of_stock: bool = False

    def __getitem__(self, platform: Platform) -> PlatformListing:
        return self.listings[platform]

    def to_columns(self) -> Dict[str, Any]:
        """Flatten into the mirror's link_<p>/gia_<p>/het_hang columns."""
        out: Dict[str, Any] = {}
        for p in Platform:
            item = self.listings[p]
            out[p.link_column] = item.link
            out[p.price_column] = item.price
        out[STOCK_COLUMN] = self.out_of_stock
        return out


def _entry_kv(entry: Any) -> Tuple[str, Any]:
    if isinstance(entry, Mapping):
        return str(entry.get("key") or ""), entry.get("value")
    return str(getattr(entry, "key", "") or ""), getattr(entry, "value", None)


def _clean_link(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def is_out_of_stock_text(value: Any, sentinel: str | None = None) -> bool:
    sentinel = sentinel if sentinel is not None else settings.OUT_OF_STOCK_TEXT
    if value is None:
        return False
    return str(value).strip() == sentinel


def extract_platform_data(
    entries: Iterable[Any] | None,
    *,
    stock_key: str | None = None,
    out_of_stock_text: str | None = None,
) -> PlatformData:
    """
    Single pass over meta_data. Links are trimmed (blank → ""), prices parsed
    (unparsable or 0 → None), and the stock flag is True only for the exact
    out-of-stock sentinel. Repeated keys: last one wins.
    """
    stock_key = stock_key or settings.STOCK_META_KEY
    data = PlatformData()
    for entry in entries or ():
        key, value = _entry_kv(entry)
        if key == stock_key:
            data.out_of_stock = is_out_of_stock_text(value, out_of_stock_text)
            continue
        slot = _META_KEYS.get(key)
        if not slot:
            continue
        platform, kind = slot
        if kind == "link":
            data.listings[platform].link = _clean_link(value)
        else:
            data.listings[platform].price = parse_optional_price(value)
    return data


def stock_flag_from_meta(entries: Iterable[Any] | None, **kw) -> bool:
    return extract_platform_data(entries, **kw).out_of_stock


def stock_flag_from_value(value: Any) -> bool:
    """Interpret a stored het_hang column value (bool, text or 0/1)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        v = value.strip()
        return v.lower() == "true" or v.lower() == settings.OUT_OF_STOCK_TEXT.lower()
    return False
