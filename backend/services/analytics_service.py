"""Analytics service - budget insights, spending trends, and period summaries.

All figures are computed in Python over ledger rows. Positive amounts are
expenses, negative amounts are income.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from models import Transaction
from services.ledger_store import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

TREND_PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90}
SUMMARY_PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}

# (fraction of spend, suggestion) per category
SAVINGS_RULES: dict[str, tuple[Decimal, str]] = {
    "FOOD_AND_DRINK": (
        Decimal("0.20"),
        "Consider cooking at home more often or setting a dining out budget",
    ),
    "TRANSPORTATION": (
        Decimal("0.15"),
        "Look into public transportation or carpooling options",
    ),
    "ENTERTAINMENT": (
        Decimal("0.25"),
        "Consider free entertainment options or subscription audits",
    ),
}
MANY_MERCHANTS_RATE = Decimal("0.10")
MANY_MERCHANTS_THRESHOLD = 5
UNUSUAL_MULTIPLIER = 3
HIGH_SPENDING_MULTIPLIER = 2
TOP_N = 5
TOP_MERCHANTS = 10


class CategoryNotFoundError(LookupError):
    """No spending recorded for the requested category."""


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _amount(txn: Transaction) -> Decimal:
    return Decimal(str(txn.amount))


class AnalyticsService:
    """Read-only spending analytics over the ledger."""

    def __init__(self, db: Session):
        self.store = LedgerStore(db)

    def _expenses(self, start: date, end: date) -> list[Transaction]:
        rows = self.store.query_entries(LedgerFilter(start_date=start, end_date=end))
        return [t for t in rows if _amount(t) > 0]

    # ------------------------------------------------------------------
    # Budget insights
    # ------------------------------------------------------------------

    def budget_insights(self, today: date | None = None) -> dict:
        """Compare the last 30 days of spending with the 90-day pattern."""
        today = today or date.today()
        recent = self._expenses(today - timedelta(days=30), today)
        longer = self._expenses(today - timedelta(days=90), today)
        logger.info(
            "Budget insights: %d recent and %d 90-day expense transactions",
            len(recent), len(longer),
        )
        return {
            "categorySpending": self.category_spending(recent, longer),
            "unusualSpending": self.unusual_spending(recent, longer),
            "savingsOpportunities": self.savings_opportunities(recent),
        }

    @staticmethod
    def category_spending(recent: list[Transaction], longer: list[Transaction]) -> list[dict]:
        """Last-30-day spend per category against a monthly average of the 90-day total."""
        recent_by_cat: dict[str, Decimal] = defaultdict(Decimal)
        longer_by_cat: dict[str, Decimal] = defaultdict(Decimal)
        for txn in recent:
            if txn.category_primary:
                recent_by_cat[txn.category_primary] += abs(_amount(txn))
        for txn in longer:
            if txn.category_primary:
                longer_by_cat[txn.category_primary] += abs(_amount(txn))

        results = []
        for category in sorted(set(recent_by_cat) | set(longer_by_cat)):
            spent = recent_by_cat.get(category, ZERO)
            avg_monthly = longer_by_cat.get(category, ZERO) / 3
            if spent > avg_monthly * Decimal("1.5"):
                recommendation = (
                    f"Spending is 50% higher than usual. Consider reviewing {category} expenses."
                )
            elif spent < avg_monthly * Decimal("0.7"):
                recommendation = f"Great job! Spending is lower than usual in {category}."
            else:
                recommendation = "Spending is consistent with your usual pattern."
            results.append(
                {
                    "category": category,
                    "spent": _money(spent),
                    "avgMonthly": _money(avg_monthly),
                    "recommendation": recommendation,
                }
            )
        return results

    @staticmethod
    def unusual_spending(recent: list[Transaction], longer: list[Transaction]) -> list[dict]:
        """Recent charges more than three times the merchant's 90-day mean."""
        totals: dict[str, Decimal] = defaultdict(Decimal)
        counts: dict[str, int] = defaultdict(int)
        for txn in longer:
            if txn.merchant_name:
                totals[txn.merchant_name] += abs(_amount(txn))
                counts[txn.merchant_name] += 1
        averages = {m: totals[m] / counts[m] for m in totals}

        unusual = []
        for txn in recent:
            avg = averages.get(txn.merchant_name) if txn.merchant_name else None
            if not avg:
                continue
            current = abs(_amount(txn))
            if current > avg * UNUSUAL_MULTIPLIER:
                percent = (current / avg * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
                unusual.append(
                    {
                        "merchant": txn.merchant_name,
                        "amount": _money(current),
                        "date": txn.date.isoformat(),
                        "reason": f"Amount is {percent}% of your usual spending at this merchant",
                    }
                )
        unusual.sort(key=lambda item: item["amount"], reverse=True)
        return unusual[:TOP_N]

    @staticmethod
    def savings_opportunities(transactions: list[Transaction]) -> list[dict]:
        """Suggested savings for the categories with known rules, top five by amount."""
        totals: dict[str, Decimal] = defaultdict(Decimal)
        merchants: dict[str, set[str]] = defaultdict(set)
        for txn in transactions:
            if not txn.category_primary:
                continue
            totals[txn.category_primary] += abs(_amount(txn))
            if txn.merchant_name:
                merchants[txn.category_primary].add(txn.merchant_name)

        opportunities = []
        for category, total in totals.items():
            if category in SAVINGS_RULES:
                rate, suggestion = SAVINGS_RULES[category]
            elif len(merchants[category]) > MANY_MERCHANTS_THRESHOLD:
                rate = MANY_MERCHANTS_RATE
                suggestion = (
                    "You shop at many different places. "
                    "Consider consolidating purchases for better deals"
                )
            else:
                continue
            savings = total * rate
            if savings > 0:
                opportunities.append(
                    {
                        "category": category,
                        "potentialSavings": _money(savings),
                        "suggestion": suggestion,
                    }
                )
        opportunities.sort(key=lambda item: item["potentialSavings"], reverse=True)
        return opportunities[:TOP_N]

    # ------------------------------------------------------------------
    # Trends
    # ------------------------------------------------------------------

    def spending_trends(self, period: str = "month", today: date | None = None) -> dict:
        """Expense points over the last week, month, or quarter.

        Raises:
            ValueError: If ``period`` is not week, month, or quarter.
        """
        if period not in TREND_PERIOD_DAYS:
            raise ValueError(f"Invalid period: {period}")
        days = TREND_PERIOD_DAYS[period]
        today = today or date.today()

        expenses = self._expenses(today - timedelta(days=days), today)
        total = sum((abs(_amount(t)) for t in expenses), ZERO)
        return {
            "trends": [
                {
                    "date": t.date.isoformat(),
                    "amount": _money(abs(_amount(t))),
                    "category": t.category_primary or "Uncategorized",
                }
                for t in expenses
            ],
            "totalSpending": _money(total),
            "avgDailySpending": _money(total / days),
        }

    # ------------------------------------------------------------------
    # Period summary
    # ------------------------------------------------------------------

    @staticmethod
    def period_bounds(period: str, today: date) -> tuple[date, date, date, date]:
        """Return ``(start, end, previous_start, previous_end)`` for a period.

        Raises:
            ValueError: If ``period`` is not week, month, quarter, or year.
        """
        days = SUMMARY_PERIOD_DAYS.get(period)
        if days is None:
            raise ValueError(f"Invalid period: {period}")
        return (
            today - timedelta(days=days),
            today,
            today - timedelta(days=days * 2),
            today - timedelta(days=days),
        )

    @staticmethod
    def summary_metrics(transactions: list[Transaction]) -> dict:
        income = ZERO
        expenses = ZERO
        by_category: dict[str, Decimal] = defaultdict(Decimal)
        for txn in transactions:
            amount = _amount(txn)
            if amount > 0:
                expenses += amount
                if txn.category_primary:
                    by_category[txn.category_primary] += amount
            else:
                income += abs(amount)

        count = len(transactions)
        net = income - expenses
        top_category = max(by_category, key=by_category.get) if by_category else ""
        return {
            "totalIncome": _money(income),
            "totalExpenses": _money(expenses),
            "netCashFlow": _money(net),
            "transactionCount": count,
            "avgTransactionAmount": _money((income + expenses) / count) if count else ZERO,
            "topExpenseCategory": top_category,
            "savingsRate": _money(net / income * 100) if income > 0 else ZERO,
        }

    @staticmethod
    def category_breakdown(transactions: list[Transaction]) -> list[dict]:
        amounts: dict[str, Decimal] = defaultdict(Decimal)
        counts: dict[str, int] = defaultdict(int)
        for txn in transactions:
            if txn.category_primary:
                amounts[txn.category_primary] += abs(_amount(txn))
                counts[txn.category_primary] += 1
        grand_total = sum(amounts.values(), ZERO)

        breakdown = [
            {
                "category": category,
                "amount": _money(amount),
                "percentage": _money(amount / grand_total * 100) if grand_total > 0 else ZERO,
                "transactionCount": counts[category],
            }
            for category, amount in amounts.items()
        ]
        breakdown.sort(key=lambda item: item["amount"], reverse=True)
        return breakdown

    def period_summary(
        self,
        period: str = "month",
        compare: bool = False,
        today: date | None = None,
    ) -> dict:
        """Totals and category breakdown for a period, optionally vs the previous one.

        Raises:
            ValueError: If ``period`` is not week, month, quarter, or year.
        """
        today = today or date.today()
        start, end, prev_start, prev_end = self.period_bounds(period, today)

        current = self.store.query_entries(LedgerFilter(start_date=start, end_date=end))
        result = {
            "summary": self.summary_metrics(current),
            "categoryBreakdown": self.category_breakdown(current),
            "comparison": None,
        }

        if compare:
            previous = self.store.query_entries(
                LedgerFilter(start_date=prev_start, end_date=prev_end)
            )
            current_metrics = result["summary"]
            previous_metrics = self.summary_metrics(previous)
            changed_keys = (
                "totalIncome",
                "totalExpenses",
                "netCashFlow",
                "transactionCount",
                "avgTransactionAmount",
                "savingsRate",
            )
            result["comparison"] = {
                "previousPeriod": previous_metrics,
                "changes": {
                    key: current_metrics[key] - previous_metrics[key] for key in changed_keys
                },
            }

        return result

    # ------------------------------------------------------------------
    # Category analysis
    # ------------------------------------------------------------------

    def category_analysis(self, category: str, days: int = 90, today: date | None = None) -> dict:
        """Spending, daily trend, and top merchants for one category.

        Raises:
            CategoryNotFoundError: If the category has no expenses in the window.
        """
        today = today or date.today()
        start = today - timedelta(days=days)
        rows = [
            t
            for t in self.store.query_entries(LedgerFilter(start_date=start, end_date=today))
            if t.category_primary == category
        ]
        expenses = [t for t in rows if _amount(t) > 0]
        if not expenses:
            raise CategoryNotFoundError(f"No spending in category {category}")

        total = sum((_amount(t) for t in expenses), ZERO)

        daily_spent: dict[date, Decimal] = defaultdict(Decimal)
        daily_count: dict[date, int] = defaultdict(int)
        for txn in rows:
            daily_spent[txn.date] += max(_amount(txn), ZERO)
            daily_count[txn.date] += 1

        merchant_totals: dict[str, Decimal] = defaultdict(Decimal)
        merchant_counts: dict[str, int] = defaultdict(int)
        for txn in expenses:
            merchant = txn.merchant_name or txn.name
            merchant_totals[merchant] += _amount(txn)
            merchant_counts[merchant] += 1
        top_merchants = sorted(merchant_totals, key=merchant_totals.get, reverse=True)

        dates = [t.date for t in expenses]
        return {
            "category": category,
            "totalSpent": _money(total),
            "transactionCount": len(expenses),
            "averageAmount": _money(total / len(expenses)),
            "dateRange": {
                "startDate": start.isoformat(),
                "endDate": today.isoformat(),
                "days": days,
                "firstTransaction": min(dates).isoformat(),
                "lastTransaction": max(dates).isoformat(),
            },
            "trends": [
                {
                    "date": day.isoformat(),
                    "dailySpent": _money(daily_spent[day]),
                    "transactionCount": daily_count[day],
                }
                for day in sorted(daily_spent)
            ],
            "topMerchants": [
                {
                    "merchant": merchant,
                    "totalSpent": _money(merchant_totals[merchant]),
                    "transactionCount": merchant_counts[merchant],
                    "averageAmount": _money(merchant_totals[merchant] / merchant_counts[merchant]),
                }
                for merchant in top_merchants[:TOP_MERCHANTS]
            ],
        }

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def spending_alerts(self, today: date | None = None) -> dict:
        """High-spending-day and duplicate-charge alerts over the last week."""
        today = today or date.today()
        week_ago = today - timedelta(days=7)
        rows = self.store.query_entries(LedgerFilter(start_date=week_ago, end_date=today))
        alerts = []

        today_spent = sum((_amount(t) for t in rows if t.date == today and _amount(t) > 0), ZERO)
        daily: dict[date, Decimal] = defaultdict(Decimal)
        for txn in rows:
            if txn.date < today and _amount(txn) > 0:
                daily[txn.date] += _amount(txn)
        average_daily = sum(daily.values(), ZERO) / len(daily) if daily else ZERO

        if average_daily > 0 and today_spent > average_daily * HIGH_SPENDING_MULTIPLIER:
            alerts.append(
                {
                    "type": "high_spending",
                    "severity": "warning",
                    "message": "Today's spending is significantly higher than your weekly average",
                    "details": {
                        "todaySpending": _money(today_spent),
                        "weeklyAverage": _money(average_daily),
                    },
                }
            )

        groups: dict[tuple, int] = defaultdict(int)
        for txn in rows:
            groups[(txn.merchant_name or txn.name, _amount(txn), txn.date)] += 1
        duplicates = [
            {
                "merchant": merchant,
                "amount": _money(amount),
                "date": day.isoformat(),
                "count": count,
            }
            for (merchant, amount, day), count in groups.items()
            if count > 1
        ]
        if duplicates:
            duplicates.sort(key=lambda item: (item["date"], item["merchant"]), reverse=True)
            alerts.append(
                {
                    "type": "duplicate_transactions",
                    "severity": "info",
                    "message": "Potential duplicate transactions detected",
                    "details": {
                        "duplicateCount": len(duplicates),
                        "duplicates": duplicates[:TOP_N],
                    },
                }
            )

        severities = [a["severity"] for a in alerts]
        return {
            "alerts": alerts,
            "summary": {
                "totalAlerts": len(alerts),
                "highSeverity": severities.count("error"),
                "mediumSeverity": severities.count("warning"),
                "lowSeverity": severities.count("info"),
            },
        }
