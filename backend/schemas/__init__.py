"""Pydantic schemas for API request/response validation."""

from schemas.institution import (
    AccountNicknameUpdate,
    AccountResponse,
    AccountVisibilityUpdate,
    BalanceRefreshResponse,
    ConnectedBanksResponse,
    ExchangeTokenRequest,
    ExchangeTokenResponse,
    HealthCheckResponse,
    LinkTokenResponse,
)
from schemas.transaction import (
    DateRangeResponse,
    FetchRequest,
    FetchResponse,
    HistoricalFetchRequest,
    HistoricalFetchResponse,
    SyncTriggerResponse,
    TransactionListResponse,
    TransactionSummaryResponse,
)

__all__ = [
    "AccountNicknameUpdate",
    "AccountResponse",
    "AccountVisibilityUpdate",
    "BalanceRefreshResponse",
    "ConnectedBanksResponse",
    "DateRangeResponse",
    "ExchangeTokenRequest",
    "ExchangeTokenResponse",
    "FetchRequest",
    "FetchResponse",
    "HealthCheckResponse",
    "HistoricalFetchRequest",
    "HistoricalFetchResponse",
    "LinkTokenResponse",
    "SyncTriggerResponse",
    "TransactionListResponse",
    "TransactionSummaryResponse",
]
