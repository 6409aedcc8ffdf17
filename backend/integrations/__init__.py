"""External API integrations.

This package contains:
- Provider protocol: normalized shapes and client protocols
- Plaid client: Integration with the Plaid API
- Transaction feed: maps Plaid sync pages into ledger entries
"""

from integrations.provider_protocol import (
    CategoryInfo,
    FeedPage,
    LedgerEntry,
    ProviderAccount,
    RawSyncPage,
)

__all__ = [
    "CategoryInfo",
    "FeedPage",
    "LedgerEntry",
    "ProviderAccount",
    "RawSyncPage",
]
