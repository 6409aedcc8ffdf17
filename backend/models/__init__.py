"""SQLAlchemy ORM models."""

from .account import Account
from .institution import Institution
from .transaction import Transaction

__all__ = ["Account", "Institution", "Transaction"]
