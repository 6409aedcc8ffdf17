"""Ledger store - persistence and queries for the transactions table.

Rows are keyed by Plaid's ``transaction_id``. Amounts follow Plaid's sign
convention: positive is money out (expense), negative is money in (income).
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from integrations.provider_protocol import LedgerEntry
from models import Account, Institution, Transaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

SORT_COLUMNS = {
    "date": Transaction.date,
    "name": Transaction.name,
    "amount": Transaction.amount,
    "category": Transaction.category_primary,
}


@dataclass
class LedgerFilter:
    """Filter for :meth:`LedgerStore.query_entries` and :meth:`LedgerStore.summarize`."""

    institution_id: int | None = None
    account_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int | None = None


@dataclass
class LedgerSummary:
    """Grouped totals over a filtered set of ledger rows."""

    total_spending: Decimal = ZERO
    total_income: Decimal = ZERO
    by_category: dict[str, Decimal] = field(default_factory=dict)
    by_institution: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class TransactionQuery:
    """Parameters of a paginated transaction search.

    ``accounts`` holds account display names. ``min_amount`` and
    ``max_amount`` bound the absolute amount.
    """

    category: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = None
    accounts: list[str] | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    sort_field: str = "date"
    sort_direction: str = "desc"
    page: int = 1
    limit: int = 50

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class SearchRow:
    """A transaction joined with its account and institution names."""

    transaction: Transaction
    account_name: str | None
    account_type: str | None
    institution_name: str | None


@dataclass
class PeriodTotals:
    total_expenses: Decimal
    total_income: Decimal
    net_cash_flow: Decimal
    transaction_count: int
    top_categories: list[dict]


def _abs_amount():
    """ABS(amount) typed as Numeric so Decimal bounds bind correctly."""
    return func.abs(Transaction.amount, type_=Transaction.amount.type)


def _dec(value) -> Decimal:
    """Coerce a SQL aggregate result (None, float, Decimal) to Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class LedgerStore:
    """Reads and writes ledger rows through one SQLAlchemy session.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _get(self, transaction_id: str) -> Transaction | None:
        return (
            self.db.query(Transaction)
            .filter(Transaction.transaction_id == transaction_id)
            .first()
        )

    def upsert_entry(self, entry: LedgerEntry) -> None:
        """Insert the entry, or overwrite the row with the same transaction_id."""
        existing = self._get(entry.transaction_id)
        if existing:
            existing.institution_id = entry.institution_id
            for name, value in entry.to_fields().items():
                setattr(existing, name, value)
        else:
            self.db.add(
                Transaction(
                    transaction_id=entry.transaction_id,
                    institution_id=entry.institution_id,
                    **entry.to_fields(),
                )
            )
        self.db.flush()

    def update_entry(self, transaction_id: str, fields: dict) -> bool:
        """Overwrite the given columns of an existing row.

        Returns:
            False if no row has this transaction_id.
        """
        existing = self._get(transaction_id)
        if existing is None:
            return False
        for name, value in fields.items():
            setattr(existing, name, value)
        self.db.flush()
        return True

    def delete_entry(self, transaction_id: str) -> bool:
        """Delete the row. Returns False if it did not exist."""
        existing = self._get(transaction_id)
        if existing is None:
            return False
        self.db.delete(existing)
        self.db.flush()
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _filtered(self, ledger_filter: LedgerFilter):
        query = self.db.query(Transaction)
        if ledger_filter.institution_id is not None:
            query = query.filter(Transaction.institution_id == ledger_filter.institution_id)
        if ledger_filter.account_id is not None:
            query = query.filter(Transaction.account_id == ledger_filter.account_id)
        if ledger_filter.start_date is not None:
            query = query.filter(Transaction.date >= ledger_filter.start_date)
        if ledger_filter.end_date is not None:
            query = query.filter(Transaction.date <= ledger_filter.end_date)
        return query

    def query_entries(self, ledger_filter: LedgerFilter) -> list[Transaction]:
        """Return matching rows, newest first by date."""
        query = self._filtered(ledger_filter).order_by(
            Transaction.date.desc(), Transaction.id.desc()
        )
        if ledger_filter.limit:
            query = query.limit(ledger_filter.limit)
        return query.all()

    def summarize(self, ledger_filter: LedgerFilter) -> LedgerSummary:
        """Compute grouped totals in SQL.

        Spending is the sum of positive amounts; income is the absolute sum
        of negative amounts. Category and institution breakdowns are
        spending only.
        """
        spending_expr = case((Transaction.amount > 0, Transaction.amount), else_=0)
        income_expr = case((Transaction.amount < 0, -Transaction.amount), else_=0)

        totals = self._filtered(ledger_filter).with_entities(
            func.sum(spending_expr), func.sum(income_expr)
        ).one()

        by_category_rows = (
            self._filtered(ledger_filter)
            .filter(Transaction.amount > 0)
            .with_entities(
                func.coalesce(Transaction.category_primary, "Uncategorized"),
                func.sum(Transaction.amount),
            )
            .group_by(func.coalesce(Transaction.category_primary, "Uncategorized"))
            .all()
        )

        by_institution_rows = (
            self._filtered(ledger_filter)
            .filter(Transaction.amount > 0)
            .join(Institution, Transaction.institution_id == Institution.id)
            .with_entities(Institution.name, func.sum(Transaction.amount))
            .group_by(Institution.name)
            .all()
        )

        return LedgerSummary(
            total_spending=_dec(totals[0]),
            total_income=_dec(totals[1]),
            by_category={name: _dec(total) for name, total in by_category_rows},
            by_institution={name: _dec(total) for name, total in by_institution_rows},
        )

    def search(self, params: TransactionQuery) -> tuple[list[SearchRow], int]:
        """Filtered, sorted, paginated search.

        Every filter value is a bound parameter; the sort column comes from
        :data:`SORT_COLUMNS` and falls back to ``date``.

        Returns:
            ``(rows, total)`` where ``total`` counts all matches before paging.
        """
        query = (
            self.db.query(
                Transaction,
                Account.name,
                Account.type,
                Institution.name,
            )
            .outerjoin(Account, Transaction.account_id == Account.account_id)
            .outerjoin(Institution, Transaction.institution_id == Institution.id)
        )

        if params.category:
            query = query.filter(Transaction.category_primary == params.category)
        if params.start_date:
            query = query.filter(Transaction.date >= params.start_date)
        if params.end_date:
            query = query.filter(Transaction.date <= params.end_date)
        if params.search:
            term = f"%{params.search.lower()}%"
            query = query.filter(
                func.lower(Transaction.name).like(term)
                | func.lower(Transaction.merchant_name).like(term)
                | func.lower(Transaction.category_primary).like(term)
            )
        if params.accounts:
            query = query.filter(Account.name.in_(params.accounts))
        if params.min_amount is not None:
            query = query.filter(_abs_amount() >= params.min_amount)
        if params.max_amount is not None:
            query = query.filter(_abs_amount() <= params.max_amount)

        total = query.count()

        column = SORT_COLUMNS.get(params.sort_field, Transaction.date)
        ordering = column.asc() if params.sort_direction == "asc" else column.desc()
        rows = (
            query.order_by(ordering, Transaction.id.desc())
            .limit(params.limit)
            .offset(params.offset)
            .all()
        )
        return [
            SearchRow(
                transaction=txn,
                account_name=account_name,
                account_type=account_type,
                institution_name=institution_name,
            )
            for txn, account_name, account_type, institution_name in rows
        ], total

    def date_range(self) -> tuple[date | None, date | None, int]:
        """Return ``(earliest, latest, count)`` over all rows."""
        earliest, latest, count = self.db.query(
            func.min(Transaction.date),
            func.max(Transaction.date),
            func.count(Transaction.id),
        ).one()
        return earliest, latest, count or 0

    def period_totals(self, start_date: date, top_n: int = 10) -> PeriodTotals:
        """Totals and top spending categories for rows dated on or after start_date."""
        summary = self.summarize(LedgerFilter(start_date=start_date))
        count = (
            self.db.query(func.count(Transaction.id))
            .filter(Transaction.date >= start_date)
            .scalar()
        ) or 0

        top_rows = (
            self.db.query(
                Transaction.category_primary,
                func.sum(Transaction.amount).label("total_spent"),
                func.count(Transaction.id),
            )
            .filter(Transaction.date >= start_date, Transaction.amount > 0)
            .group_by(Transaction.category_primary)
            .order_by(func.sum(Transaction.amount).desc())
            .limit(top_n)
            .all()
        )

        return PeriodTotals(
            total_expenses=summary.total_spending,
            total_income=summary.total_income,
            net_cash_flow=summary.total_income - summary.total_spending,
            transaction_count=count,
            top_categories=[
                {
                    "category": category or "Uncategorized",
                    "totalSpent": _dec(total),
                    "transactionCount": txn_count,
                }
                for category, total, txn_count in top_rows
            ],
        )
