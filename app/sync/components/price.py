# app/sync/components/price.py
from __future__ import annotations

import math
import re
from typing import Any

_CURRENCY_RE = re.compile(r"[₫$€£¥]")
_SEPARATOR_RE = re.compile(r"[\s,.]")
_LEADING_INT_RE = re.compile(r"[+-]?\d+")


def parse_price(text: Any) -> int:
    """
    Turn "495.000₫", "495,000", "495 000" or 495000 into 495000.
    Dots, commas and spaces are all thousands separators here (vi-VN prices are
    whole đồng). Anything unparsable comes back as 0; never raises.
    """
    if isinstance(text, bool) or text is None:
        return 0
    if isinstance(text, (int, float)):
        if isinstance(text, float) and not math.isfinite(text):
            return 0
        return int(round(text))
    if not isinstance(text, str):
        return 0

    clean = _SEPARATOR_RE.sub("", _CURRENCY_RE.sub("", text)).strip()
    m = _LEADING_INT_RE.match(clean)
    if not m:
        return 0
    return int(m.group(0))


def parse_optional_price(text: Any) -> int | None:
    """
    Price for a field where "no value" must stay distinguishable from a number.
    A parse result of 0 is treated as absent (a real price of 0 is not supported).
    """
    return parse_price(text) or None


def format_price(n: Any) -> str:
    """495000 -> "495.000" (vi-VN grouping, no decimals). 0 / falsy -> "0"."""
    if not n or isinstance(n, bool):
        return "0"
    try:
        value = int(round(float(n)))
    except (TypeError, ValueError, OverflowError):
        return "0"
    return f"{value:,}".replace(",", ".")


def format_price_with_currency(n: Any) -> str:
    return format_price(n) + "₫"
