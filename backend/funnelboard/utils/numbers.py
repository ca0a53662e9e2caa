"""Lenient numeric parsing for values coming from third-party JSON."""

from __future__ import annotations

import math
import re
from typing import Any, Optional

_CURRENCY_NOISE = re.compile(r"[\s$,€£]")


def parse_currency(value: Any) -> Optional[float]:
    """Parse a number that may carry currency symbols or thousands separators.

    Examples:
        parse_currency("$1,500.00") -> 1500.0
        parse_currency(2500) -> 2500.0
        parse_currency("n/a") -> None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = _CURRENCY_NOISE.sub("", str(value))
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def to_float(value: Any, default: float = 0.0) -> float:
    """Float conversion used for Graph API metrics, which arrive as strings."""
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
