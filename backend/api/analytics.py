"""Analytics API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/insights")
def budget_insights(db: Session = Depends(get_db)):
    """Category spending vs. usual, unusual merchant charges, and savings ideas."""
    return AnalyticsService(db).budget_insights()


@router.get("/trends")
def spending_trends(
    period: str = Query("month", description="week, month, or quarter"),
    db: Session = Depends(get_db),
):
    """Daily expense points and totals for the period."""
    try:
        return AnalyticsService(db).spending_trends(period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/summary")
def period_summary(
    period: str = Query("month", description="week, month, quarter, or year"),
    compare: bool = False,
    db: Session = Depends(get_db),
):
    """Income, expense, and category breakdown, optionally vs. the previous period."""
    try:
        return AnalyticsService(db).period_summary(period, compare=compare)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
