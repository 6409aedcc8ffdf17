"""Sync service - reconciles transactions for every linked institution."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from database import get_session_local
from integrations.exceptions import ErrorCategory, ProviderError
from integrations.plaid_client import PlaidClient, is_valid_access_token
from integrations.provider_protocol import TransactionSyncClient
from integrations.transaction_feed import TransactionFeed
from models import Institution, Transaction
from services.institution_service import InstitutionNotFoundError
from services.reconciliation_service import ReconciliationResult, ReconciliationService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def categorize_error(exc: Exception) -> ErrorCategory:
    """Map an exception raised during sync to an ErrorCategory."""
    if isinstance(exc, ProviderError):
        return exc.category
    return ErrorCategory.UNKNOWN


# ----------------------------------------------------------------------
# Run registry
# ----------------------------------------------------------------------


@dataclass
class InstitutionRun:
    """Latest sync run for one institution."""

    institution_id: int
    institution_name: str
    status: str  # running | success | failed | skipped
    started_at: datetime
    finished_at: datetime | None = None
    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0
    error: str | None = None
    error_category: ErrorCategory | None = None

    def to_dict(self) -> dict:
        return {
            "institutionId": self.institution_id,
            "institutionName": self.institution_name,
            "status": self.status,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "skipped": self.skipped,
            "error": self.error,
            "errorCategory": self.error_category.value if self.error_category else None,
        }


class SyncRunRegistry:
    """In-memory record of sync runs, keyed by institution id.

    Shared by request handlers, background tasks, and the scheduler. A run
    for an institution that is already ``running`` is refused.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: dict[int, InstitutionRun] = {}

    def try_start(self, institution_id: int, institution_name: str) -> bool:
        """Mark the institution as running. Returns False if it already is."""
        with self._lock:
            current = self._runs.get(institution_id)
            if current is not None and current.status == "running":
                return False
            self._runs[institution_id] = InstitutionRun(
                institution_id=institution_id,
                institution_name=institution_name,
                status="running",
                started_at=datetime.now(timezone.utc),
            )
            return True

    def finish_success(self, institution_id: int, result: ReconciliationResult) -> None:
        with self._lock:
            run = self._runs[institution_id]
            run.status = "success"
            run.finished_at = datetime.now(timezone.utc)
            run.added = result.added
            run.modified = result.modified
            run.removed = result.removed
            run.skipped = result.skipped

    def finish_failure(self, institution_id: int, error: Exception) -> None:
        with self._lock:
            run = self._runs[institution_id]
            run.status = "failed"
            run.finished_at = datetime.now(timezone.utc)
            run.error = str(error)
            run.error_category = categorize_error(error)

    def mark_skipped(self, institution_id: int, institution_name: str, reason: str) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._runs[institution_id] = InstitutionRun(
                institution_id=institution_id,
                institution_name=institution_name,
                status="skipped",
                started_at=now,
                finished_at=now,
                error=reason,
                error_category=ErrorCategory.AUTH,
            )

    def is_running(self, institution_id: int) -> bool:
        with self._lock:
            run = self._runs.get(institution_id)
            return run is not None and run.status == "running"

    def get(self, institution_id: int) -> InstitutionRun | None:
        with self._lock:
            return self._runs.get(institution_id)

    def snapshot(self) -> list[dict]:
        """Return every recorded run as a JSON-ready dict, ordered by institution id."""
        with self._lock:
            return [self._runs[k].to_dict() for k in sorted(self._runs)]

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


_run_registry = SyncRunRegistry()


def get_sync_run_registry() -> SyncRunRegistry:
    """Return the process-wide run registry."""
    return _run_registry


# ----------------------------------------------------------------------
# Driver
# ----------------------------------------------------------------------


@dataclass
class SyncSummary:
    total_expenses: Decimal = ZERO
    total_income: Decimal = ZERO
    net_cash_flow: Decimal = ZERO
    transaction_count: int = 0

    def to_dict(self) -> dict:
        return {
            "totalExpenses": self.total_expenses,
            "totalIncome": self.total_income,
            "netCashFlow": self.net_cash_flow,
            "transactionCount": self.transaction_count,
        }


@dataclass
class SyncResult:
    """Entries gathered across all institutions plus their summary."""

    transactions: list[Transaction] = field(default_factory=list)
    summary: SyncSummary = field(default_factory=SyncSummary)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def summarize_transactions(transactions: list[Transaction]) -> SyncSummary:
    """Recompute totals from signed amounts (positive = expense)."""
    expenses = ZERO
    income = ZERO
    for txn in transactions:
        amount = Decimal(str(txn.amount))
        if amount > 0:
            expenses += amount
        else:
            income += -amount
    return SyncSummary(
        total_expenses=expenses,
        total_income=income,
        net_cash_flow=income - expenses,
        transaction_count=len(transactions),
    )


class SyncService:
    """Runs reconciliation for every active institution, one at a time."""

    def __init__(
        self,
        client: Optional[TransactionSyncClient] = None,
        registry: Optional[SyncRunRegistry] = None,
        page_size: Optional[int] = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            client: Plaid client used for ``/transactions/sync``. If None,
                a PlaidClient is created on first use.
            registry: Run registry; defaults to the process-wide one.
            page_size: Records per sync page; defaults to SYNC_PAGE_SIZE.
        """
        self._client = client
        self._registry = registry
        self._page_size = page_size

    @property
    def client(self) -> TransactionSyncClient:
        if self._client is None:
            self._client = PlaidClient()
        return self._client

    @property
    def registry(self) -> SyncRunRegistry:
        if self._registry is None:
            self._registry = get_sync_run_registry()
        return self._registry

    def _sync_institution(
        self,
        db: Session,
        reconciler: ReconciliationService,
        institution: Institution,
        result: SyncResult,
        **window,
    ) -> None:
        """Reconcile one institution into ``result``; never raises."""
        institution_id = institution.id
        name = institution.name

        if not is_valid_access_token(institution.access_token):
            logger.warning("Skipping %s: invalid access token format", name)
            self.registry.mark_skipped(institution_id, name, "Invalid access token format")
            result.skipped.append(name)
            return

        if not self.registry.try_start(institution_id, name):
            logger.warning("Skipping %s: sync already in progress", name)
            result.skipped.append(name)
            return

        try:
            outcome = reconciler.reconcile(db, institution, **window)
            institution.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception as e:
            db.rollback()
            if isinstance(e, ProviderError):
                logger.warning("Sync failed for %s: %s", name, e)
            else:
                logger.error("Unexpected error syncing %s", name, exc_info=True)
            self.registry.finish_failure(institution_id, e)
            result.failed.append(name)
            return

        self.registry.finish_success(institution_id, outcome)
        result.transactions.extend(outcome.transactions)
        result.succeeded.append(name)

    def _reconciler(self) -> ReconciliationService:
        return ReconciliationService(TransactionFeed(self.client, self._page_size))

    def run_for_all_institutions(
        self,
        db: Session,
        days: int = 30,
        today: date | None = None,
    ) -> SyncResult:
        """Reconcile every active institution and aggregate the results.

        Failures are isolated per institution: the session is rolled back to
        the last committed page and the next institution proceeds. With no
        active institutions an empty result is returned without touching
        the ledger.

        Args:
            db: Database session.
            days: Window, in days, of entries returned per institution.
            today: Reference date for the window (defaults to today).

        Returns:
            SyncResult with the accumulated entries and a summary computed
            from them.
        """
        institutions = (
            db.query(Institution)
            .filter(Institution.is_active.is_(True))
            .order_by(Institution.id)
            .all()
        )
        if not institutions:
            logger.info("No active institutions, nothing to sync")
            return SyncResult()

        reconciler = self._reconciler()
        result = SyncResult()

        logger.info("Transaction sync started for %d institutions", len(institutions))
        for institution in institutions:
            self._sync_institution(db, reconciler, institution, result, days=days, today=today)

        result.summary = summarize_transactions(result.transactions)
        logger.info(
            "Transaction sync finished: %d succeeded, %d failed, %d skipped, %d transactions",
            len(result.succeeded),
            len(result.failed),
            len(result.skipped),
            result.summary.transaction_count,
        )
        return result

    def run_for_institution(
        self,
        db: Session,
        institution_id: int,
        start_date: date,
        end_date: date,
    ) -> SyncResult:
        """Reconcile one active institution and return its entries in a date window.

        The whole feed is still read from a fresh cursor; only the returned
        entries are limited to ``start_date .. end_date``.

        Raises:
            InstitutionNotFoundError: If no active institution has this id.
        """
        institution = (
            db.query(Institution)
            .filter(Institution.id == institution_id, Institution.is_active.is_(True))
            .first()
        )
        if institution is None:
            raise InstitutionNotFoundError(f"Institution not found or inactive: {institution_id}")

        result = SyncResult()
        logger.info(
            "Historical fetch for %s from %s to %s", institution.name, start_date, end_date
        )
        self._sync_institution(
            db,
            self._reconciler(),
            institution,
            result,
            start_date=start_date,
            end_date=end_date,
        )
        result.summary = summarize_transactions(result.transactions)
        return result


def run_sync_job(days: int = 30, service: SyncService | None = None) -> None:
    """Run one full sync in a fresh session; used by background triggers.

    Errors are logged, never raised.
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        (service or SyncService()).run_for_all_institutions(db, days=days)
    except Exception:
        logger.error("Background transaction sync failed", exc_info=True)
    finally:
        db.close()
