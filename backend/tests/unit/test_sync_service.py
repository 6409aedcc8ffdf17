"""Unit tests for SyncService and the sync run registry."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from integrations.exceptions import ErrorCategory, ProviderAPIError
from integrations.provider_protocol import RawSyncPage
from models import Institution, Transaction
from services.ledger_store import LedgerStore
from services.institution_service import InstitutionNotFoundError
from services.reconciliation_service import ReconciliationResult
from services.sync_service import (
    SyncRunRegistry,
    SyncService,
    categorize_error,
    run_sync_job,
    summarize_transactions,
)
from tests.fixtures.mocks import (
    AUTH_FAILURE,
    CONNECTION_FAILURE,
    RATE_LIMIT_FAILURE,
    MockPlaidClient,
    raw_txn,
)

TODAY = date(2024, 1, 31)


def _service(client, registry=None) -> SyncService:
    return SyncService(client=client, registry=registry or SyncRunRegistry())


def test_no_institutions_returns_empty_result_without_querying(db):
    client = MockPlaidClient()
    with patch.object(LedgerStore, "query_entries") as query_entries:
        result = _service(client).run_for_all_institutions(db, days=30)

    query_entries.assert_not_called()
    assert result.transactions == []
    assert result.summary.to_dict() == {
        "totalExpenses": 0,
        "totalIncome": 0,
        "netCashFlow": 0,
        "transactionCount": 0,
    }
    assert client.sync_calls == []


def test_inactive_institutions_are_ignored(db, institution):
    institution.is_active = False
    db.commit()
    client = MockPlaidClient()

    result = _service(client).run_for_all_institutions(db)

    assert result.succeeded == []
    assert client.sync_calls == []


def test_aggregates_entries_across_institutions(db, institution, second_institution):
    client = MockPlaidClient(
        pages={
            institution.access_token: [
                RawSyncPage(added=[raw_txn("a1", amount=25, txn_date="2024-01-10")])
            ],
            second_institution.access_token: [
                RawSyncPage(
                    added=[
                        raw_txn("b1", amount=-100, txn_date="2024-01-15"),
                        raw_txn("b2", amount=5.5, txn_date="2024-01-16"),
                    ]
                )
            ],
        }
    )
    result = _service(client).run_for_all_institutions(db, days=30, today=TODAY)

    assert {t.transaction_id for t in result.transactions} == {"a1", "b1", "b2"}
    assert result.summary.total_expenses == Decimal("30.5")
    assert result.summary.total_income == Decimal("100")
    assert result.summary.net_cash_flow == Decimal("69.5")
    assert result.summary.transaction_count == 3
    assert result.succeeded == ["First Platypus Bank", "Tartan Bank"]


def test_failure_of_one_institution_is_isolated(db, institution, second_institution):
    client = MockPlaidClient(
        pages={
            institution.access_token: [
                RawSyncPage(added=[raw_txn("a1", amount=25, txn_date="2024-01-10")])
            ],
        },
        failures={second_institution.access_token: CONNECTION_FAILURE},
    )
    registry = SyncRunRegistry()
    result = _service(client, registry).run_for_all_institutions(db, days=30, today=TODAY)

    assert [t.transaction_id for t in result.transactions] == ["a1"]
    assert result.summary.total_expenses == Decimal("25")
    assert result.failed == ["Tartan Bank"]
    assert db.query(Transaction).filter(Transaction.transaction_id == "a1").count() == 1

    failed_run = registry.get(second_institution.id)
    assert failed_run.status == "failed"
    assert failed_run.error_category == ErrorCategory.CONNECTION
    assert registry.get(institution.id).status == "success"


def test_failure_mid_feed_keeps_committed_pages(db, institution, second_institution):
    token = second_institution.access_token
    client = MockPlaidClient(
        pages={token: [RawSyncPage(added=[raw_txn("b1", txn_date="2024-01-10")], has_more=True)]},
        failures={token: AUTH_FAILURE},
        fail_after={token: 1},
    )
    _service(client).run_for_all_institutions(db, days=30, today=TODAY)

    assert db.query(Transaction).filter(Transaction.transaction_id == "b1").count() == 1


def test_unexpected_error_is_isolated(db, institution, second_institution):
    client = MockPlaidClient(
        pages={
            second_institution.access_token: [
                RawSyncPage(added=[raw_txn("b1", txn_date="2024-01-10")])
            ]
        },
        failures={institution.access_token: RuntimeError("boom")},
    )
    registry = SyncRunRegistry()
    result = _service(client, registry).run_for_all_institutions(db, days=30, today=TODAY)

    assert result.failed == ["First Platypus Bank"]
    assert [t.transaction_id for t in result.transactions] == ["b1"]
    assert registry.get(institution.id).error_category == ErrorCategory.UNKNOWN


def test_invalid_access_token_is_skipped_without_network_call(db, institution):
    institution.access_token = "public-sandbox-123"
    db.commit()
    client = MockPlaidClient()
    registry = SyncRunRegistry()

    result = _service(client, registry).run_for_all_institutions(db)

    assert client.sync_calls == []
    assert result.skipped == ["First Platypus Bank"]
    assert registry.get(institution.id).status == "skipped"


def test_success_refreshes_updated_at(db, institution):
    stale = datetime.now(timezone.utc) - timedelta(days=3)
    institution.updated_at = stale
    db.commit()

    _service(MockPlaidClient()).run_for_all_institutions(db)
    db.refresh(institution)

    assert institution.updated_at.replace(tzinfo=timezone.utc) > stale


def test_failure_does_not_refresh_updated_at(db, institution):
    stale = datetime(2024, 1, 1, 12, 0, 0)
    institution.updated_at = stale
    db.commit()
    client = MockPlaidClient(failures={institution.access_token: AUTH_FAILURE})

    _service(client).run_for_all_institutions(db)
    db.refresh(institution)

    assert institution.updated_at == stale


def test_running_institution_is_skipped(db, institution):
    registry = SyncRunRegistry()
    registry.try_start(institution.id, institution.name)
    client = MockPlaidClient()

    result = _service(client, registry).run_for_all_institutions(db)

    assert result.skipped == ["First Platypus Bank"]
    assert client.sync_calls == []
    assert registry.is_running(institution.id)


def test_each_run_starts_from_fresh_cursor(db, institution):
    client = MockPlaidClient()
    service = _service(client)
    service.run_for_all_institutions(db)
    service.run_for_all_institutions(db)

    assert [call[1] for call in client.sync_calls] == [None, None]


def test_run_for_institution_limits_entries_to_window(db, institution, second_institution):
    client = MockPlaidClient(
        pages={
            institution.access_token: [
                RawSyncPage(
                    added=[
                        raw_txn("h1", amount=20, txn_date="2023-06-15"),
                        raw_txn("h2", amount=-500, txn_date="2023-07-01"),
                        raw_txn("h3", amount=5, txn_date="2024-01-20"),
                    ]
                )
            ]
        }
    )

    result = _service(client).run_for_institution(
        db, institution.id, date(2023, 6, 1), date(2023, 7, 31)
    )

    assert sorted(t.transaction_id for t in result.transactions) == ["h1", "h2"]
    assert result.succeeded == ["First Platypus Bank"]
    assert result.summary.total_income == Decimal("500")
    assert db.query(Transaction).count() == 3
    assert [call[0] for call in client.sync_calls] == [institution.access_token]


def test_run_for_institution_reports_failure(db, institution):
    client = MockPlaidClient(failures={institution.access_token: CONNECTION_FAILURE})

    result = _service(client).run_for_institution(
        db, institution.id, date(2023, 6, 1), date(2023, 7, 31)
    )

    assert result.failed == ["First Platypus Bank"]
    assert result.transactions == []


def test_run_for_institution_unknown_id(db):
    with pytest.raises(InstitutionNotFoundError):
        _service(MockPlaidClient()).run_for_institution(
            db, 999, date(2023, 6, 1), date(2023, 7, 31)
        )


def test_run_for_institution_rejects_inactive(db, institution):
    institution.is_active = False
    db.commit()
    client = MockPlaidClient()

    with pytest.raises(InstitutionNotFoundError):
        _service(client).run_for_institution(
            db, institution.id, date(2023, 6, 1), date(2023, 7, 31)
        )
    assert client.sync_calls == []


def test_summarize_transactions_uses_signed_amounts():
    rows = [
        Transaction(amount=Decimal("42.50")),
        Transaction(amount=Decimal("-1000")),
        Transaction(amount=Decimal("7.50")),
    ]
    summary = summarize_transactions(rows)
    assert summary.total_expenses == Decimal("50.00")
    assert summary.total_income == Decimal("1000")
    assert summary.net_cash_flow == Decimal("950.00")
    assert summary.transaction_count == 3


class TestRunRegistry:
    def test_try_start_refuses_running(self):
        registry = SyncRunRegistry()
        assert registry.try_start(1, "Bank") is True
        assert registry.try_start(1, "Bank") is False
        assert registry.try_start(2, "Other") is True

    def test_finish_success_allows_next_run(self):
        registry = SyncRunRegistry()
        registry.try_start(1, "Bank")
        registry.finish_success(1, ReconciliationResult(institution_id=1, added=3, removed=1))

        run = registry.get(1)
        assert run.status == "success"
        assert run.added == 3
        assert run.finished_at is not None
        assert registry.try_start(1, "Bank") is True

    def test_snapshot_is_json_ready(self):
        registry = SyncRunRegistry()
        registry.try_start(2, "B")
        registry.try_start(1, "A")
        registry.finish_failure(1, RATE_LIMIT_FAILURE)

        snapshot = registry.snapshot()
        assert [run["institutionId"] for run in snapshot] == [1, 2]
        assert snapshot[0]["status"] == "failed"
        assert snapshot[0]["errorCategory"] == "rate_limit"
        assert snapshot[1]["status"] == "running"
        assert snapshot[1]["finishedAt"] is None

    def test_clear(self):
        registry = SyncRunRegistry()
        registry.try_start(1, "A")
        registry.clear()
        assert registry.snapshot() == []


def test_categorize_error():
    assert categorize_error(AUTH_FAILURE) == ErrorCategory.AUTH
    assert categorize_error(CONNECTION_FAILURE) == ErrorCategory.CONNECTION
    assert categorize_error(RATE_LIMIT_FAILURE) == ErrorCategory.RATE_LIMIT
    assert categorize_error(ProviderAPIError("bad", status_code=400)) == ErrorCategory.UNKNOWN
    assert categorize_error(ValueError("x")) == ErrorCategory.UNKNOWN


def test_run_sync_job_uses_own_session_and_swallows_errors(db):
    class ExplodingService:
        def run_for_all_institutions(self, session, days):
            assert session is db
            raise RuntimeError("ledger unavailable")

    with patch("services.sync_service.get_session_local", return_value=lambda: db):
        run_sync_job(days=7, service=ExplodingService())
