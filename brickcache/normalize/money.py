from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")

NUM_RE = re.compile(r"-?(?:\d|[.,]\d)[\d.,]*")
THOUSANDS_RE = re.compile(r"-?\d{1,3}(?:,\d{3})+")

CURRENCY_PREFIXES = (
    ("US $", "USD"),
    ("USD", "USD"),
    ("EUR", "EUR"),
    ("€", "EUR"),
    ("GBP", "GBP"),
    ("£", "GBP"),
    ("CA $", "CAD"),
    ("AU $", "AUD"),
)


def parse_money(value: Any) -> Optional[Decimal]:
    """Price text or number -> two-decimal Decimal, None when nothing numeric.

    Currency symbols and thousands separators are dropped: ``"US $1,234.5"``
    gives ``Decimal("1234.50")``, ``"EUR 12,50"`` gives ``Decimal("12.50")``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float)):
        d = Decimal(str(value))
    else:
        text = " ".join(str(value).split())
        m = NUM_RE.search(text)
        if not m:
            return None
        num = m.group(0).rstrip(".,")
        if "," in num and "." in num:
            # the last separator is the decimal one
            if num.rfind(",") > num.rfind("."):
                num = num.replace(".", "").replace(",", ".")
            else:
                num = num.replace(",", "")
        elif "," in num:
            if THOUSANDS_RE.fullmatch(num):
                num = num.replace(",", "")
            else:
                num = num.replace(",", ".")
        try:
            d = Decimal(num)
        except InvalidOperation:
            return None
    if not d.is_finite():
        return None
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def detect_currency(text: str, default: str = "USD") -> str:
    s = " ".join((text or "").split()).upper()
    for prefix, code in CURRENCY_PREFIXES:
        if prefix.upper() in s:
            return code
    return default
