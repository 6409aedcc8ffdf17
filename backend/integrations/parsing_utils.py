"""Shared value parsing utilities for provider payloads.

Plaid's SDK returns ``date`` objects, while raw JSON fixtures and older
payloads carry ISO strings; amounts arrive as floats, ints, or strings.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation


def parse_date(value) -> date | None:
    """Parse a date, datetime, or ISO 8601 string into a ``date``.

    Handles:
    - ``date`` objects (returned as-is)
    - ``datetime`` objects (date part)
    - Date-only strings ("2024-06-28")
    - Full timestamps ("2024-06-28T18:42:46Z", "2024-06-28 18:42:46+00:00")

    Returns:
        A ``date``, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    value_str = str(value).strip()
    if not value_str:
        return None

    try:
        return date.fromisoformat(value_str[:10])
    except (ValueError, TypeError):
        return None


def to_decimal(value) -> Decimal | None:
    """Convert a value to Decimal, returning None on failure.

    Booleans are rejected even though ``bool`` is an ``int`` subclass.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result
