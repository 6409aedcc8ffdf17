"""Pydantic schemas for linked institutions, accounts, and Plaid Link."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenRequest(BaseModel):
    public_token: str
    institution_id: str
    institution_name: str


class ExchangeTokenResponse(BaseModel):
    id: int
    institution_id: str
    institution_name: str
    account_count: int


class ConnectedBank(BaseModel):
    id: int
    institutionId: str
    name: str
    isActive: bool
    accountCount: int
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ConnectedBanksResponse(BaseModel):
    connectedBanks: list[ConnectedBank]


class InstitutionHealth(BaseModel):
    id: int
    name: str
    status: str
    lastSync: Optional[str] = None
    hoursSinceSync: Optional[float] = None


class HealthCheckResponse(BaseModel):
    overallHealth: str
    healthy: list[str]
    unhealthy: list[str]
    institutions: list[InstitutionHealth]


class AccountResponse(BaseModel):
    """Schema for Account API response."""

    id: int
    account_id: str
    institution_id: int
    institution_name: Optional[str] = None
    name: str
    official_name: Optional[str] = None
    type: str
    subtype: Optional[str] = None
    mask: Optional[str] = None
    current_balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    nickname: Optional[str] = None
    is_visible: bool = True
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AccountNicknameUpdate(BaseModel):
    """A blank or null nickname clears it."""

    nickname: Optional[str] = Field(default=None, max_length=100)


class AccountVisibilityUpdate(BaseModel):
    isVisible: bool


class BalanceRefreshResponse(BaseModel):
    updated_accounts: int
    succeeded: list[str]
    failed: list[dict]
