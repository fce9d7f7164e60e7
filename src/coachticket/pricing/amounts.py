from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")

_NUMBER = re.compile(r"[0-9]+(?:\.[0-9]+)?")


def parse_amount(value: Any) -> Decimal | None:
    """Read a money amount from a number or from the first number inside a string ("USD 42.50")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    if isinstance(value, str):
        match = _NUMBER.search(value)
        return Decimal(match.group(0)) if match else None
    return None


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
