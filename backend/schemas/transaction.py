"""Pydantic schemas for transaction and sync endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionResponse(BaseModel):
    """A ledger row as returned by the API."""

    id: int
    transaction_id: str
    account_id: Optional[str] = None
    institution_id: int
    amount: Decimal
    date: date
    name: str
    merchant_name: Optional[str] = None
    category_primary: Optional[str] = None
    category_detailed: Optional[str] = None
    type: str
    pending: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionListItem(TransactionResponse):
    """Search result row with account and institution names joined in."""

    category: Optional[str] = None
    account_name: Optional[str] = None
    account_type: Optional[str] = None
    institution_name: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionListResponse(BaseModel):
    transactions: list[TransactionListItem]
    pagination: Pagination


class SyncSummaryResponse(BaseModel):
    totalExpenses: Decimal = Decimal("0")
    totalIncome: Decimal = Decimal("0")
    netCashFlow: Decimal = Decimal("0")
    transactionCount: int = 0


class SyncTriggerResponse(BaseModel):
    """Response of the fire-and-forget sync trigger."""

    success: bool
    message: str
    timestamp: datetime


class FetchRequest(BaseModel):
    days: int = Field(default=30, ge=1, le=730)


class FetchResponse(BaseModel):
    success: bool
    message: str
    transactionCount: int
    summary: SyncSummaryResponse
    transactions: list[TransactionResponse] = []


class HistoricalFetchRequest(BaseModel):
    institutionId: int
    startDate: date
    endDate: date


class HistoricalFetchResponse(FetchResponse):
    institution: str
    dateRange: dict[str, date]


class CategoryTotal(BaseModel):
    category: str
    totalSpent: Decimal
    transactionCount: int


class DateWindow(BaseModel):
    startDate: date
    endDate: date
    days: int


class TransactionSummaryResponse(BaseModel):
    totalExpenses: Decimal
    totalIncome: Decimal
    netCashFlow: Decimal
    transactionCount: int
    averageDaily: Decimal
    topCategories: list[CategoryTotal]
    dateRange: DateWindow


class DateRangeResponse(BaseModel):
    earliestDate: Optional[date] = None
    latestDate: Optional[date] = None
    totalTransactions: int = 0
