"""Shared query parameter parsing utilities."""

from datetime import date
from decimal import Decimal, InvalidOperation

from fastapi import HTTPException


def parse_csv_list(value: str | None) -> list[str] | None:
    """Split a comma-separated query value into trimmed, non-empty items.

    Returns:
        The items, or None if there are none.
    """
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


def parse_date_param(value: str | None, name: str) -> date | None:
    """Parse an ISO date query value.

    Raises:
        HTTPException: 400 if the value is not a YYYY-MM-DD date.
    """
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def parse_decimal_param(value: str | None, name: str) -> Decimal | None:
    """Parse a numeric query value.

    Raises:
        HTTPException: 400 if the value is not a finite number.
    """
    if value is None or value == "":
        return None
    try:
        result = Decimal(value)
    except (InvalidOperation, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
    if not result.is_finite():
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
    return result
