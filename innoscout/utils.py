"""Shared utility functions used across innoscout modules."""
from __future__ import annotations

import json
import re
from typing import Any

_MISSING = object()
_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def parse_amount(value: str | int | float | None) -> int:
    """Parse a locale-formatted amount like ``"150,000,000"`` to an int.

    Commas are dropped and the leading run of digits is used; anything
    unparseable counts as zero.
    """
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    m = _LEADING_DIGITS.match(str(value).replace(",", ""))
    return int(m.group(1)) if m else 0


def format_amount(value: str | int | None) -> str:
    """Compact financing label: ``$1.2B``, ``$300M`` or ``TBD`` below a million."""
    num = parse_amount(value)
    if num >= 1_000_000_000:
        return f"${num / 1_000_000_000:.1f}B"
    if num >= 1_000_000:
        return f"${num / 1_000_000:.0f}M"
    return "TBD"
