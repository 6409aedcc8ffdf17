"""Reconciliation service - drives one institution's transaction feed to completion."""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.orm import Session

from integrations.provider_protocol import FeedPage
from integrations.transaction_feed import TransactionFeed
from models import Institution, Transaction
from services.ledger_store import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one institution."""

    institution_id: int
    transactions: list[Transaction] = field(default_factory=list)
    pages: int = 0
    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0
    missing_updates: int = 0
    next_cursor: str | None = None


class ReconciliationService:
    """Applies Plaid's added/modified/removed sets to the ledger.

    The cursor starts at None on every run and is held only in memory, so
    each run re-reads the feed from the provider's oldest page. Each page
    is committed before the next one is fetched: if a later page fails,
    the pages already applied stay in the ledger and a retry re-upserts
    them harmlessly.
    """

    def __init__(self, feed: TransactionFeed):
        self._feed = feed

    def apply_page(self, store: LedgerStore, page: FeedPage, result: ReconciliationResult) -> None:
        """Apply one page in the order added, modified, removed."""
        for entry in page.added:
            store.upsert_entry(entry)
            result.added += 1

        for entry in page.modified:
            if store.update_entry(entry.transaction_id, entry.to_fields()):
                result.modified += 1
            else:
                logger.warning(
                    "Modified transaction %s not found in ledger, skipping",
                    entry.transaction_id,
                )
                result.missing_updates += 1

        for transaction_id in page.removed:
            if store.delete_entry(transaction_id):
                result.removed += 1
            else:
                logger.debug("Removed transaction %s was not in ledger", transaction_id)

        result.skipped += page.skipped

    def reconcile(
        self,
        db: Session,
        institution: Institution,
        days: int = 30,
        today: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> ReconciliationResult:
        """Run the cursor loop for one institution until has_more is false.

        Any error from the feed aborts the loop and propagates; pages already
        committed are kept.

        Args:
            db: Database session (committed after every page).
            institution: The institution to reconcile.
            days: Size of the result window, in days back from ``today``.
            today: Reference date for the result window (defaults to today).
            start_date: Explicit window start; overrides ``days``.
            end_date: Explicit window end; overrides ``today``.

        Returns:
            ReconciliationResult with the institution's entries dated within
            the window and per-run counters.
        """
        store = LedgerStore(db)
        result = ReconciliationResult(institution_id=institution.id)
        institution_id = institution.id
        name = institution.name

        cursor: str | None = None
        has_more = True
        while has_more:
            page = self._feed.fetch_page(institution.access_token, cursor, institution_id)
            self.apply_page(store, page, result)
            db.commit()

            result.pages += 1
            cursor = page.next_cursor
            has_more = page.has_more

        result.next_cursor = cursor

        end = end_date or today or date.today()
        start = start_date or end - timedelta(days=days)
        result.transactions = store.query_entries(
            LedgerFilter(institution_id=institution_id, start_date=start, end_date=end)
        )

        logger.info(
            "Reconciled %s: %d pages, %d added, %d modified, %d removed, %d skipped",
            name,
            result.pages,
            result.added,
            result.modified,
            result.removed,
            result.skipped,
        )
        return result
