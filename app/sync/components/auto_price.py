# app/sync/components/auto_price.py
# ==========================================================
# Suggest regular/promotional price from marketplace prices
# ==========================================================
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from app.sync.components.platforms import Platform
from app.sync.components.price import format_price_with_currency, parse_price

# TikTok listings are not used as a price source
AUTO_PRICE_PLATFORMS: Tuple[Platform, ...] = (Platform.SHOPEE, Platform.LAZADA, Platform.DMX, Platform.TIKI)


@dataclass
class AutoPriceResult:
    regular_price: Optional[int] = None
    promotional_price: Optional[int] = None
    external_url: Optional[str] = None
    lowest_platform: Optional[str] = None
    highest_platform: Optional[str] = None


def calculate_auto_price(record: Dict[str, Any]) -> AutoPriceResult:
    """Highest platform price → regular, lowest → promotional, cheapest link → external_url."""
    priced: List[Tuple[Platform, int, str]] = []
    for p in AUTO_PRICE_PLATFORMS:
        price = parse_price(record.get(p.price_column))
        if price > 0:
            priced.append((p, price, (record.get(p.link_column) or "").strip()))
    if not priced:
        return AutoPriceResult()

    # first one wins on ties
    highest = priced[0]
    lowest = priced[0]
    for item in priced[1:]:
        if item[1] > highest[1]:
            highest = item
        if item[1] < lowest[1]:
            lowest = item

    return AutoPriceResult(
        regular_price=highest[1],
        promotional_price=lowest[1],
        external_url=lowest[2] or None,
        lowest_platform=lowest[0].value,
        highest_platform=highest[0].value,
    )


def needs_auto_price(record: Dict[str, Any]) -> bool:
    return not parse_price(record.get("price"))


def apply_auto_price_if_needed(record: Dict[str, Any]) -> Tuple[Dict[str, Any], bool, str]:
    """
    Returns (record, was_updated, summary). The input dict is not modified.
    Only records without a regular price are touched.
    """
    if not needs_auto_price(record):
        return record, False, "Regular price already set"

    res = calculate_auto_price(record)
    if not res.regular_price:
        return record, False, "No platform prices to derive from"

    updated = {
        **record,
        "price": res.regular_price,
        "promotional_price": res.promotional_price,
        "external_url": res.external_url or record.get("external_url"),
    }
    lines = [f"Regular price: {format_price_with_currency(res.regular_price)} (from {res.highest_platform})"]
    if res.promotional_price:
        lines.append(f"Promotional price: {format_price_with_currency(res.promotional_price)} (from {res.lowest_platform})")
    if res.external_url:
        lines.append(f"URL: from {res.lowest_platform}")
    return updated, True, "\n".join(lines)
