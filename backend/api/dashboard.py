"""Dashboard API endpoints."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from services.dashboard_service import DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


class OverviewResponse(BaseModel):
    """Balances over visible accounts of active institutions."""

    totalCashBalance: Decimal
    totalPortfolioValue: Decimal
    netWorth: Decimal
    todayNetFlow: Decimal


class BudgetLine(BaseModel):
    category: str
    budgeted: Decimal
    spent: Decimal
    percentage: Decimal


@router.get("/overview", response_model=OverviewResponse)
def overview(db: Session = Depends(get_db)):
    """Cash balance, portfolio value, net worth, and today's net flow."""
    return DashboardService(db).overview()


@router.get("/budget", response_model=list[BudgetLine])
def budget(db: Session = Depends(get_db)):
    """This month's spend per category against last month's baseline."""
    return DashboardService(db).budget()


@router.get("/categories", response_model=list[str])
def categories(db: Session = Depends(get_db)):
    """Distinct transaction categories."""
    return DashboardService(db).categories()
