"""Integration tests for the transactions API."""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from config import settings
from integrations.provider_protocol import RawSyncPage
from main import app
from models import Account, Institution, Transaction
from services.scheduler_service import get_scheduler
from tests.fixtures import make_transaction
from tests.fixtures.mocks import CONNECTION_FAILURE, raw_txn

FOOD = {"primary": "FOOD_AND_DRINK", "detailed": "FOOD_AND_DRINK_RESTAURANT"}


def _recent(days_ago: int) -> date:
    return date.today() - timedelta(days=days_ago)


def _dec(value) -> Decimal:
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class TestSyncTrigger:
    def test_trigger_runs_job_in_background(self, client):
        with patch("api.transactions.run_sync_job") as mock_job:
            response = client.post("/api/transactions/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Transaction sync started"
        mock_job.assert_called_once()
        assert mock_job.call_args[0][0] == settings.SYNC_DEFAULT_DAYS

    def test_status_reports_runs(self, client, run_registry, institution):
        run_registry.try_start(institution.id, institution.name)

        body = client.get("/api/transactions/sync/status").json()

        assert body["running"] is True
        assert body["runs"][0]["institutionName"] == "First Platypus Bank"
        assert body["runs"][0]["status"] == "running"

    def test_status_empty(self, client):
        body = client.get("/api/transactions/sync/status").json()
        assert body["running"] is False
        assert body["runs"] == []


class TestFetch:
    def test_fetch_reconciles_and_returns_window(self, client, db, institution, mock_plaid):
        mock_plaid.pages[institution.access_token] = [
            RawSyncPage(
                added=[
                    raw_txn("t1", amount=25.0, txn_date=_recent(2).isoformat(), name="Diner", category=FOOD),
                    raw_txn("t2", amount=-1000.0, txn_date=_recent(3).isoformat(), name="Payroll"),
                ],
                next_cursor="c1",
                has_more=True,
            ),
            RawSyncPage(removed=[{"transaction_id": "t2"}], next_cursor="c2"),
        ]

        response = client.post("/api/transactions/fetch", json={"days": 30})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["transactionCount"] == 1
        assert body["message"] == "Fetched 1 transactions"
        assert _dec(body["summary"]["totalExpenses"]) == Decimal("25")
        assert body["transactions"][0]["transaction_id"] == "t1"
        assert body["transactions"][0]["category_primary"] == "FOOD_AND_DRINK"
        assert db.query(Transaction).count() == 1

    def test_fetch_without_body_uses_default_window(self, client, institution, mock_plaid):
        response = client.post("/api/transactions/fetch")
        assert response.status_code == 200
        assert response.json()["transactionCount"] == 0
        assert mock_plaid.sync_calls[0][0] == institution.access_token

    def test_fetch_reports_failed_institutions(
        self, client, institution, second_institution, mock_plaid, run_registry
    ):
        mock_plaid.failures[second_institution.access_token] = CONNECTION_FAILURE

        body = client.post("/api/transactions/fetch", json={"days": 7}).json()

        assert body["success"] is True
        assert body["message"] == "Fetched 0 transactions; failed: Tartan Bank"
        assert run_registry.get(second_institution.id).status == "failed"

    def test_fetch_no_institutions(self, client, mock_plaid):
        body = client.post("/api/transactions/fetch").json()
        assert body["transactionCount"] == 0
        assert mock_plaid.sync_calls == []

    def test_fetch_rejects_bad_window(self, client):
        response = client.post("/api/transactions/fetch", json={"days": 0})
        assert response.status_code == 422


class TestHistoricalFetch:
    def test_fetch_one_institution_in_window(
        self, client, db, institution, second_institution, mock_plaid
    ):
        mock_plaid.pages[institution.access_token] = [
            RawSyncPage(
                added=[
                    raw_txn("h1", amount=40.0, txn_date="2023-06-15", name="Hardware"),
                    raw_txn("h2", amount=-500.0, txn_date="2023-07-01", name="Payroll"),
                    raw_txn("h3", amount=12.0, txn_date="2023-09-01", name="Late"),
                ],
                next_cursor="c1",
            )
        ]

        response = client.post(
            "/api/transactions/fetch-historical",
            json={
                "institutionId": institution.id,
                "startDate": "2023-06-01",
                "endDate": "2023-07-31",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["institution"] == "First Platypus Bank"
        assert body["dateRange"] == {"startDate": "2023-06-01", "endDate": "2023-07-31"}
        assert body["transactionCount"] == 2
        assert body["message"] == "Fetched 2 transactions from First Platypus Bank"
        assert _dec(body["summary"]["totalIncome"]) == Decimal("500")
        assert {t["transaction_id"] for t in body["transactions"]} == {"h1", "h2"}
        assert db.query(Transaction).count() == 3
        assert [call[0] for call in mock_plaid.sync_calls] == [institution.access_token]

    def test_start_must_precede_end(self, client, institution):
        response = client.post(
            "/api/transactions/fetch-historical",
            json={
                "institutionId": institution.id,
                "startDate": "2023-07-31",
                "endDate": "2023-07-31",
            },
        )
        assert response.status_code == 400

    def test_missing_fields(self, client, institution):
        response = client.post(
            "/api/transactions/fetch-historical", json={"institutionId": institution.id}
        )
        assert response.status_code == 422

    def test_unknown_institution(self, client):
        response = client.post(
            "/api/transactions/fetch-historical",
            json={"institutionId": 999, "startDate": "2023-01-01", "endDate": "2023-02-01"},
        )
        assert response.status_code == 404

    def test_inactive_institution(self, client, db, institution):
        institution.is_active = False
        db.commit()

        response = client.post(
            "/api/transactions/fetch-historical",
            json={
                "institutionId": institution.id,
                "startDate": "2023-01-01",
                "endDate": "2023-02-01",
            },
        )
        assert response.status_code == 404

    def test_provider_failure(self, client, institution, mock_plaid):
        mock_plaid.failures[institution.access_token] = CONNECTION_FAILURE

        response = client.post(
            "/api/transactions/fetch-historical",
            json={
                "institutionId": institution.id,
                "startDate": "2023-01-01",
                "endDate": "2023-02-01",
            },
        )
        assert response.status_code == 502

    def test_already_syncing(self, client, institution, run_registry):
        run_registry.try_start(institution.id, institution.name)

        response = client.post(
            "/api/transactions/fetch-historical",
            json={
                "institutionId": institution.id,
                "startDate": "2023-01-01",
                "endDate": "2023-02-01",
            },
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Sync skipped for First Platypus Bank"


# ---------------------------------------------------------------------------
# Banks
# ---------------------------------------------------------------------------


class TestBanks:
    def test_health_check(self, client, institution, second_institution):
        body = client.get("/api/transactions/health_check").json()

        assert body["overallHealth"] == "degraded"
        assert body["healthy"] == ["First Platypus Bank"]
        assert body["unhealthy"] == ["Tartan Bank"]
        assert len(body["institutions"]) == 2

    def test_health_check_without_institutions(self, client):
        body = client.get("/api/transactions/health_check").json()
        assert body["overallHealth"] == "healthy"
        assert body["institutions"] == []

    def test_connected_banks(self, client, institution, account):
        body = client.get("/api/transactions/connected_banks").json()

        assert len(body["connectedBanks"]) == 1
        bank = body["connectedBanks"][0]
        assert bank["name"] == "First Platypus Bank"
        assert bank["institutionId"] == "ins_109508"
        assert bank["accountCount"] == 1

    def test_remove_bank(self, client, db, institution, account, transaction, mock_plaid):
        response = client.delete(f"/api/transactions/banks/{institution.id}")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Removed First Platypus Bank",
            "institutionId": institution.id,
        }
        assert mock_plaid.removed_tokens == ["access-sandbox-xyz"]
        assert db.query(Institution).count() == 0
        assert db.query(Account).count() == 0
        assert db.query(Transaction).count() == 0

    def test_remove_missing_bank(self, client):
        response = client.delete("/api/transactions/banks/999")
        assert response.status_code == 404

    def test_scheduler_status(self, client):
        body = client.get("/api/transactions/scheduler_status").json()
        assert set(body["scheduler"]) == {"transaction-sync", "health-check"}
        assert set(body["nextRun"]) == {"transaction-sync", "health-check"}

    def test_scheduler_trigger_runs_sync_job(self, client):
        scheduler = MagicMock()
        app.dependency_overrides[get_scheduler] = lambda: scheduler

        response = client.post("/api/transactions/scheduler/trigger")

        assert response.status_code == 200
        assert response.json()["message"] == "Scheduled transaction sync triggered"
        scheduler.trigger_transaction_sync.assert_called_once_with()


# ---------------------------------------------------------------------------
# Ledger queries
# ---------------------------------------------------------------------------


class TestSearch:
    def _seed(self, db, institution, account):
        make_transaction(
            db, institution, "a", "40.00", date(2024, 3, 1), name="Grocer",
            category="FOOD_AND_DRINK", merchant_name="Grocer", account_id=account.account_id,
        )
        make_transaction(
            db, institution, "b", "-900.00", date(2024, 3, 2), name="Payroll",
            category="INCOME", account_id=account.account_id,
        )
        make_transaction(
            db, institution, "c", "8.50", date(2024, 3, 3), name="Coffee Bar",
            category="FOOD_AND_DRINK", merchant_name="Coffee Bar",
        )
        db.commit()

    def test_default_order_and_joins(self, client, db, institution, account):
        self._seed(db, institution, account)

        body = client.get("/api/transactions").json()

        assert [t["transaction_id"] for t in body["transactions"]] == ["c", "b", "a"]
        assert body["pagination"] == {"page": 1, "limit": 50, "total": 3, "pages": 1}
        first = body["transactions"][2]
        assert first["account_name"] == "Plaid Checking"
        assert first["institution_name"] == "First Platypus Bank"
        assert first["category"] == "FOOD_AND_DRINK"
        assert body["transactions"][0]["account_name"] is None

    def test_filters(self, client, db, institution, account):
        self._seed(db, institution, account)

        by_category = client.get("/api/transactions", params={"category": "FOOD_AND_DRINK"}).json()
        assert {t["transaction_id"] for t in by_category["transactions"]} == {"a", "c"}

        by_text = client.get("/api/transactions", params={"search": "coffee"}).json()
        assert [t["transaction_id"] for t in by_text["transactions"]] == ["c"]

        by_account = client.get("/api/transactions", params={"accounts": "Plaid Checking"}).json()
        assert {t["transaction_id"] for t in by_account["transactions"]} == {"a", "b"}

        by_amount = client.get(
            "/api/transactions", params={"minAmount": "10", "maxAmount": "100"}
        ).json()
        assert [t["transaction_id"] for t in by_amount["transactions"]] == ["a"]

        by_date = client.get(
            "/api/transactions", params={"startDate": "2024-03-02", "endDate": "2024-03-02"}
        ).json()
        assert [t["transaction_id"] for t in by_date["transactions"]] == ["b"]

    def test_sort_and_pagination(self, client, db, institution, account):
        self._seed(db, institution, account)

        body = client.get(
            "/api/transactions",
            params={"sortField": "amount", "sortDirection": "asc", "limit": 2, "page": 1},
        ).json()

        assert [t["transaction_id"] for t in body["transactions"]] == ["b", "c"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

        page_two = client.get(
            "/api/transactions",
            params={"sortField": "amount", "sortDirection": "asc", "limit": 2, "page": 2},
        ).json()
        assert [t["transaction_id"] for t in page_two["transactions"]] == ["a"]

    def test_invalid_parameters(self, client):
        assert client.get("/api/transactions", params={"startDate": "03/01/2024"}).status_code == 400
        assert client.get("/api/transactions", params={"minAmount": "lots"}).status_code == 400
        assert client.get("/api/transactions", params={"sortField": "id; DROP"}).status_code == 422
        assert client.get("/api/transactions", params={"page": 0}).status_code == 422


class TestSummaryAndRange:
    def test_summary(self, client, db, institution):
        make_transaction(db, institution, "e1", "60.00", _recent(1), category="FOOD_AND_DRINK")
        make_transaction(db, institution, "e2", "30.00", _recent(2), category="TRANSPORTATION")
        make_transaction(db, institution, "i1", "-500.00", _recent(3), category="INCOME")
        make_transaction(db, institution, "old", "999.00", _recent(60))
        db.commit()

        body = client.get("/api/transactions/summary", params={"days": 30}).json()

        assert _dec(body["totalExpenses"]) == Decimal("90")
        assert _dec(body["totalIncome"]) == Decimal("500")
        assert _dec(body["netCashFlow"]) == Decimal("410")
        assert body["transactionCount"] == 3
        assert _dec(body["averageDaily"]) == Decimal("3.00")
        assert [c["category"] for c in body["topCategories"]] == ["FOOD_AND_DRINK", "TRANSPORTATION"]
        assert body["dateRange"]["days"] == 30

    def test_date_range(self, client, db, institution):
        make_transaction(db, institution, "x", "1.00", date(2023, 12, 31))
        make_transaction(db, institution, "y", "1.00", date(2024, 2, 1))
        db.commit()

        body = client.get("/api/transactions/date-range").json()

        assert body == {"earliestDate": "2023-12-31", "latestDate": "2024-02-01", "totalTransactions": 2}

    def test_date_range_empty(self, client):
        body = client.get("/api/transactions/date-range").json()
        assert body == {"earliestDate": None, "latestDate": None, "totalTransactions": 0}


class TestCategoryAnalysis:
    def test_analysis(self, client, db, institution):
        make_transaction(
            db, institution, "f1", "25.00", _recent(3),
            category="FOOD_AND_DRINK", merchant_name="Cafe",
        )
        make_transaction(
            db, institution, "f2", "15.00", _recent(100),
            category="FOOD_AND_DRINK", merchant_name="Cafe",
        )
        db.commit()

        response = client.get("/api/transactions/categories/FOOD_AND_DRINK/analysis")

        assert response.status_code == 200
        body = response.json()
        assert body["category"] == "FOOD_AND_DRINK"
        assert _dec(body["totalSpent"]) == Decimal("25")
        assert body["dateRange"]["days"] == 90
        assert body["topMerchants"][0]["merchant"] == "Cafe"

    def test_longer_window(self, client, db, institution):
        make_transaction(db, institution, "f1", "15.00", _recent(100), category="FOOD_AND_DRINK")
        db.commit()

        body = client.get(
            "/api/transactions/categories/FOOD_AND_DRINK/analysis", params={"days": 180}
        ).json()

        assert body["transactionCount"] == 1

    def test_no_spending_is_404(self, client):
        response = client.get("/api/transactions/categories/TRAVEL/analysis")
        assert response.status_code == 404


class TestAlerts:
    def test_alerts(self, client, db, institution):
        make_transaction(db, institution, "a1", "10.00", _recent(1), merchant_name="A")
        make_transaction(db, institution, "a2", "90.00", _recent(0), merchant_name="B")
        db.commit()

        body = client.get("/api/transactions/alerts").json()

        assert [a["type"] for a in body["alerts"]] == ["high_spending"]
        assert body["summary"]["mediumSeverity"] == 1

    def test_no_alerts(self, client):
        body = client.get("/api/transactions/alerts").json()
        assert body == {
            "alerts": [],
            "summary": {"totalAlerts": 0, "highSeverity": 0, "mediumSeverity": 0, "lowSeverity": 0},
        }
