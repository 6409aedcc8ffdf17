"""Normalized data shapes exchanged between the Plaid integration and services.

Provider payloads are mapped into these dataclasses at the integration
boundary so the services never handle raw SDK objects.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol


@dataclass
class ProviderAccount:
    """Normalized account data from the aggregation provider."""

    id: str  # Provider's external ID for the account
    name: str
    type: str  # depository | credit | investment | loan | other
    subtype: str | None = None
    official_name: str | None = None
    mask: str | None = None  # Last digits of the account number
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None


@dataclass
class CategoryInfo:
    """Canonical category pair derived from any provider category shape."""

    primary: str
    detailed: str | None = None


@dataclass
class LedgerEntry:
    """A provider transaction mapped into the ledger row shape."""

    transaction_id: str
    institution_id: int
    amount: Decimal
    date: date
    name: str
    type: str  # "expense" if amount > 0 else "income"
    account_id: str | None = None
    merchant_name: str | None = None
    category_primary: str | None = None
    category_detailed: str | None = None
    pending: bool = False

    def to_fields(self) -> dict:
        """Return the mutable columns, as written by an update."""
        return {
            "account_id": self.account_id,
            "amount": self.amount,
            "date": self.date,
            "name": self.name,
            "merchant_name": self.merchant_name,
            "category_primary": self.category_primary,
            "category_detailed": self.category_detailed,
            "type": self.type,
            "pending": self.pending,
        }


@dataclass
class RawSyncPage:
    """One unprocessed page of the provider's transaction sync feed."""

    added: list[dict] = field(default_factory=list)
    modified: list[dict] = field(default_factory=list)
    removed: list[dict] = field(default_factory=list)
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class FeedPage:
    """One page of the transaction feed, mapped into ledger entries.

    ``skipped`` counts malformed records dropped while mapping.
    """

    added: list[LedgerEntry] = field(default_factory=list)
    modified: list[LedgerEntry] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    next_cursor: str = ""
    has_more: bool = False
    skipped: int = 0


class TransactionSyncClient(Protocol):
    """The slice of the Plaid client the transaction feed depends on."""

    def sync_transactions(
        self, access_token: str, cursor: str | None = None, count: int = 500
    ) -> RawSyncPage:
        """Call the cursor-based transaction sync endpoint once."""
        ...


class AccountsClient(Protocol):
    """The slice of the Plaid client the institution service depends on."""

    def exchange_public_token(self, public_token: str) -> dict:
        """Exchange a Link public_token for ``{access_token, item_id}``."""
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch all accounts (with balances) for one Item."""
        ...

    def remove_item(self, access_token: str) -> None:
        """Revoke an Item's access token."""
        ...
