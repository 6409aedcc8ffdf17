"""Shared API helpers for route handlers."""

import math


def page_count(total: int, limit: int) -> int:
    """Number of pages needed to show ``total`` rows, ``limit`` per page."""
    return math.ceil(total / limit) if limit else 0
