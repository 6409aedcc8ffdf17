"""Transactions API endpoints: sync triggers, bank management, and ledger queries."""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import page_count
from config import settings
from database import get_db
from schemas import (
    ConnectedBanksResponse,
    DateRangeResponse,
    FetchRequest,
    FetchResponse,
    HealthCheckResponse,
    HistoricalFetchRequest,
    HistoricalFetchResponse,
    SyncTriggerResponse,
    TransactionListResponse,
    TransactionSummaryResponse,
)
from services.analytics_service import AnalyticsService, CategoryNotFoundError
from services.institution_service import InstitutionNotFoundError, InstitutionService
from services.ledger_store import LedgerStore, TransactionQuery
from services.scheduler_service import SchedulerService, get_scheduler
from services.sync_service import (
    SyncRunRegistry,
    SyncService,
    get_sync_run_registry,
    run_sync_job,
)
from utils.query_params import parse_csv_list, parse_date_param, parse_decimal_param

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


def get_sync_service() -> SyncService:
    """Dependency for the sync driver (overridable in tests)."""
    return SyncService()


def get_institution_service() -> InstitutionService:
    """Dependency for the institution service (overridable in tests)."""
    return InstitutionService()


# ------------------------------------------------------------------
# Sync
# ------------------------------------------------------------------


@router.post("/sync", response_model=SyncTriggerResponse)
def trigger_sync(
    background_tasks: BackgroundTasks,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Start a sync of every linked institution in the background.

    Returns immediately; progress is reported by ``GET /sync/status``.
    """
    background_tasks.add_task(run_sync_job, settings.SYNC_DEFAULT_DAYS, sync_service)
    return SyncTriggerResponse(
        success=True,
        message="Transaction sync started",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/sync/status")
def sync_status(registry: SyncRunRegistry = Depends(get_sync_run_registry)):
    """Latest sync run per institution."""
    runs = registry.snapshot()
    return {
        "running": any(run["status"] == "running" for run in runs),
        "runs": runs,
        "timestamp": datetime.now(timezone.utc),
    }


@router.post("/fetch", response_model=FetchResponse)
def fetch_transactions(
    body: Optional[FetchRequest] = None,
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync every linked institution now and return the resulting entries.

    Raises:
        HTTPException: 500 if the ledger itself fails.
    """
    days = body.days if body else settings.SYNC_DEFAULT_DAYS
    try:
        result = sync_service.run_for_all_institutions(db, days=days)
    except Exception:
        logger.error("Unexpected error during transaction fetch", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred while fetching transactions.",
        )

    count = result.summary.transaction_count
    if result.failed:
        message = f"Fetched {count} transactions; failed: {', '.join(result.failed)}"
    else:
        message = f"Fetched {count} transactions"
    return FetchResponse(
        success=True,
        message=message,
        transactionCount=count,
        summary=result.summary.to_dict(),
        transactions=result.transactions,
    )


@router.post("/fetch-historical", response_model=HistoricalFetchResponse)
def fetch_historical(
    body: HistoricalFetchRequest,
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync one institution now and return its entries between two dates.

    Raises:
        HTTPException: 400 for an empty date range, 404 for an unknown or
            inactive institution, 409 if the sync was skipped (already
            running or unusable token), 502 if the provider call failed.
    """
    if body.startDate >= body.endDate:
        raise HTTPException(status_code=400, detail="startDate must be before endDate")
    try:
        result = sync_service.run_for_institution(
            db, body.institutionId, start_date=body.startDate, end_date=body.endDate
        )
    except InstitutionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if result.skipped:
        raise HTTPException(
            status_code=409, detail=f"Sync skipped for {result.skipped[0]}"
        )
    if result.failed:
        raise HTTPException(
            status_code=502, detail=f"Failed to fetch transactions from {result.failed[0]}"
        )

    name = result.succeeded[0]
    count = result.summary.transaction_count
    return HistoricalFetchResponse(
        success=True,
        message=f"Fetched {count} transactions from {name}",
        institution=name,
        dateRange={"startDate": body.startDate, "endDate": body.endDate},
        transactionCount=count,
        summary=result.summary.to_dict(),
        transactions=result.transactions,
    )


# ------------------------------------------------------------------
# Banks
# ------------------------------------------------------------------


@router.get("/health_check", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)):
    """Freshness of each linked institution's last successful sync."""
    return InstitutionService.check_health(db)


@router.get("/connected_banks", response_model=ConnectedBanksResponse)
def connected_banks(db: Session = Depends(get_db)):
    """Active linked institutions with their account counts."""
    return {"connectedBanks": InstitutionService.list_connected(db)}


@router.delete("/banks/{institution_id}")
def remove_bank(
    institution_id: int,
    db: Session = Depends(get_db),
    service: InstitutionService = Depends(get_institution_service),
):
    """Disconnect an institution and delete its accounts and transactions."""
    try:
        name = service.remove_institution(db, institution_id)
    except InstitutionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Institution not found: {institution_id}")
    except Exception:
        logger.error("Failed to remove institution %s", institution_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to remove institution")
    return {"success": True, "message": f"Removed {name}", "institutionId": institution_id}


@router.get("/scheduler_status")
def scheduler_status(scheduler: SchedulerService = Depends(get_scheduler)):
    """Whether each scheduled job is running, and when it runs next."""
    return {
        "scheduler": scheduler.job_status(),
        "nextRun": scheduler.next_run_times(),
        "timestamp": datetime.now(timezone.utc),
    }


@router.post("/scheduler/trigger", response_model=SyncTriggerResponse)
def trigger_scheduled_sync(
    background_tasks: BackgroundTasks,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """Run the scheduler's transaction sync job now, outside its cron schedule."""
    background_tasks.add_task(scheduler.trigger_transaction_sync)
    return SyncTriggerResponse(
        success=True,
        message="Scheduled transaction sync triggered",
        timestamp=datetime.now(timezone.utc),
    )


# ------------------------------------------------------------------
# Ledger queries
# ------------------------------------------------------------------


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    category: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    search: Optional[str] = None,
    accounts: Optional[str] = Query(None, description="Comma-separated account names"),
    minAmount: Optional[str] = None,
    maxAmount: Optional[str] = None,
    sortField: str = Query("date", pattern="^(date|name|amount|category)$"),
    sortDirection: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """Search the ledger with filters, sorting, and pagination."""
    params = TransactionQuery(
        category=category or None,
        start_date=parse_date_param(startDate, "startDate"),
        end_date=parse_date_param(endDate, "endDate"),
        search=search or None,
        accounts=parse_csv_list(accounts),
        min_amount=parse_decimal_param(minAmount, "minAmount"),
        max_amount=parse_decimal_param(maxAmount, "maxAmount"),
        sort_field=sortField,
        sort_direction=sortDirection,
        page=page,
        limit=limit,
    )
    rows, total = LedgerStore(db).search(params)

    transactions = []
    for row in rows:
        txn = row.transaction
        transactions.append(
            {
                "id": txn.id,
                "transaction_id": txn.transaction_id,
                "account_id": txn.account_id,
                "institution_id": txn.institution_id,
                "amount": txn.amount,
                "date": txn.date,
                "name": txn.name,
                "merchant_name": txn.merchant_name,
                "category_primary": txn.category_primary,
                "category_detailed": txn.category_detailed,
                "type": txn.type,
                "pending": txn.pending,
                "created_at": txn.created_at,
                "updated_at": txn.updated_at,
                "category": txn.category_primary,
                "account_name": row.account_name,
                "account_type": row.account_type,
                "institution_name": row.institution_name,
            }
        )

    return {
        "transactions": transactions,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": page_count(total, limit),
        },
    }


@router.get("/summary", response_model=TransactionSummaryResponse)
def transaction_summary(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    """Income, expense, and top category totals over the last ``days`` days."""
    end = date.today()
    start = end - timedelta(days=days)
    totals = LedgerStore(db).period_totals(start)
    return {
        "totalExpenses": totals.total_expenses,
        "totalIncome": totals.total_income,
        "netCashFlow": totals.net_cash_flow,
        "transactionCount": totals.transaction_count,
        "averageDaily": (totals.total_expenses / days).quantize(Decimal("0.01")),
        "topCategories": totals.top_categories,
        "dateRange": {"startDate": start, "endDate": end, "days": days},
    }


@router.get("/date-range", response_model=DateRangeResponse)
def date_range(db: Session = Depends(get_db)):
    """Earliest and latest transaction dates and the total row count."""
    earliest, latest, count = LedgerStore(db).date_range()
    return {"earliestDate": earliest, "latestDate": latest, "totalTransactions": count}


@router.get("/categories/{category}/analysis")
def category_analysis(
    category: str,
    days: int = Query(90, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    """Spending, daily trend, and top merchants for one category."""
    try:
        return AnalyticsService(db).category_analysis(category, days=days)
    except CategoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/alerts")
def spending_alerts(db: Session = Depends(get_db)):
    """High-spending-day and duplicate-charge alerts over the last week."""
    return AnalyticsService(db).spending_alerts()
