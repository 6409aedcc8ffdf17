"""API route handlers."""
from . import accounts, analytics, dashboard, plaid, transactions

__all__ = ["accounts", "analytics", "dashboard", "plaid", "transactions"]
