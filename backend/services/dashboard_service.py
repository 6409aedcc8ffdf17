"""Dashboard service - balance overview and a month-over-month category budget."""

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, Institution, Transaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

CASH_ACCOUNT_TYPES = ("depository", "credit")
INVESTMENT_ACCOUNT_TYPES = ("investment",)

# Budget baseline: last month's spend plus 10%, or this month's plus 20% when
# the category is new.
PREVIOUS_MONTH_MARKUP = Decimal("1.1")
NEW_CATEGORY_MARKUP = Decimal("1.2")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def month_bounds(day: date) -> tuple[date, date]:
    """First and last day of the month containing ``day``."""
    start = day.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


class DashboardService:
    """Read-only dashboard figures over active institutions."""

    def __init__(self, db: Session):
        self.db = db

    def _active_transactions(self):
        return self.db.query(Transaction).join(
            Institution, Transaction.institution_id == Institution.id
        ).filter(Institution.is_active.is_(True))

    def overview(self, today: date | None = None) -> dict:
        """Cash, portfolio, and net worth over visible accounts, plus today's net flow.

        Credit balances count toward cash as stored. ``todayNetFlow`` is
        income minus spending for today's ledger rows.
        """
        today = today or date.today()
        accounts = (
            self.db.query(Account)
            .join(Institution, Account.institution_id == Institution.id)
            .filter(Institution.is_active.is_(True), Account.is_visible.is_(True))
            .all()
        )

        cash = ZERO
        portfolio = ZERO
        for account in accounts:
            balance = Decimal(str(account.current_balance or 0))
            if account.type in CASH_ACCOUNT_TYPES:
                cash += balance
            elif account.type in INVESTMENT_ACCOUNT_TYPES:
                portfolio += balance

        today_total = (
            self._active_transactions()
            .filter(Transaction.date == today)
            .with_entities(func.sum(Transaction.amount))
            .scalar()
        )

        return {
            "totalCashBalance": _money(cash),
            "totalPortfolioValue": _money(portfolio),
            "netWorth": _money(cash + portfolio),
            "todayNetFlow": _money(-Decimal(str(today_total or 0))),
        }

    def _spending_by_category(self, start: date, end: date) -> dict[str, Decimal]:
        rows = (
            self._active_transactions()
            .filter(
                Transaction.date >= start,
                Transaction.date <= end,
                Transaction.amount > 0,
                Transaction.category_primary.isnot(None),
            )
            .with_entities(Transaction.category_primary, func.sum(Transaction.amount))
            .group_by(Transaction.category_primary)
            .all()
        )
        return {category: Decimal(str(total)) for category, total in rows}

    def budget(self, today: date | None = None) -> list[dict]:
        """This month's spend per category against a budget derived from last month.

        Categories spent in only last month are listed with zero spend after
        the current ones.
        """
        today = today or date.today()
        month_start, month_end = month_bounds(today)
        prev_start, prev_end = month_bounds(month_start - timedelta(days=1))

        current = self._spending_by_category(month_start, month_end)
        previous = self._spending_by_category(prev_start, prev_end)

        budget = []
        for category in sorted(current, key=current.get, reverse=True):
            spent = current[category]
            if category in previous:
                budgeted = previous[category] * PREVIOUS_MONTH_MARKUP
            else:
                budgeted = spent * NEW_CATEGORY_MARKUP
            budget.append(
                {
                    "category": category,
                    "budgeted": _money(budgeted),
                    "spent": _money(spent),
                    "percentage": _money(spent / budgeted * 100) if budgeted > 0 else ZERO,
                }
            )
        for category in sorted(set(previous) - set(current)):
            budget.append(
                {
                    "category": category,
                    "budgeted": _money(previous[category] * PREVIOUS_MONTH_MARKUP),
                    "spent": _money(ZERO),
                    "percentage": _money(ZERO),
                }
            )
        return budget

    def categories(self) -> list[str]:
        """Distinct primary categories in the ledger, alphabetical."""
        rows = (
            self._active_transactions()
            .filter(Transaction.category_primary.isnot(None))
            .with_entities(Transaction.category_primary)
            .distinct()
            .order_by(Transaction.category_primary)
            .all()
        )
        return [category for (category,) in rows]
