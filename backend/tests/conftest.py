"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.accounts import get_institution_service as get_institution_service_for_accounts
from api.plaid import _get_plaid_client
from api.transactions import get_institution_service as get_institution_service_for_transactions
from api.transactions import get_sync_service
from database import Base, enable_sqlite_foreign_keys, get_db
from main import app
from services.institution_service import InstitutionService
from services.sync_service import SyncRunRegistry, SyncService
from services.sync_service import get_sync_run_registry
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    institution,
    second_institution,
    transaction,
)
from tests.fixtures.mocks import MockPlaidClient


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_plaid")
def mock_plaid_fixture():
    """A scriptable Plaid client with no pages or accounts configured."""
    return MockPlaidClient()


@pytest.fixture(name="run_registry")
def run_registry_fixture():
    """A fresh run registry, isolated from the process-wide one."""
    return SyncRunRegistry()


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid, run_registry):
    """Create a test client with the test database and a mock Plaid client."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_sync_service():
        return SyncService(client=mock_plaid, registry=run_registry)

    def override_get_institution_service():
        return InstitutionService(client=mock_plaid)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = override_get_sync_service
    app.dependency_overrides[get_sync_run_registry] = lambda: run_registry
    app.dependency_overrides[get_institution_service_for_transactions] = (
        override_get_institution_service
    )
    app.dependency_overrides[get_institution_service_for_accounts] = (
        override_get_institution_service
    )
    app.dependency_overrides[_get_plaid_client] = lambda: mock_plaid
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
