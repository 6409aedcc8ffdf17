"""Test fixtures and sample data."""
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from models import Account, Institution, Transaction
from sqlalchemy.orm import Session


def make_transaction(
    db: Session,
    institution: Institution,
    transaction_id: str,
    amount: str,
    txn_date: date,
    name: str = "Purchase",
    category: str | None = "GENERAL_MERCHANDISE",
    merchant_name: str | None = None,
    account_id: str | None = None,
) -> Transaction:
    """Add a ledger row directly (flushed, not committed).

    This is a helper function (not a fixture) for tests that need many rows.
    """
    value = Decimal(amount)
    txn = Transaction(
        transaction_id=transaction_id,
        institution_id=institution.id,
        account_id=account_id,
        amount=value,
        date=txn_date,
        name=name,
        merchant_name=merchant_name,
        category_primary=category,
        type="expense" if value > 0 else "income",
        pending=False,
    )
    db.add(txn)
    db.flush()
    return txn


@pytest.fixture
def institution(db: Session) -> Institution:
    """Create a linked institution with a sandbox access token."""
    inst = Institution(
        institution_id="ins_109508",
        name="First Platypus Bank",
        access_token="access-sandbox-xyz",
        item_id="item-1",
        is_active=True,
        updated_at=datetime.now(timezone.utc),
    )
    db.add(inst)
    db.commit()
    db.refresh(inst)
    return inst


@pytest.fixture
def second_institution(db: Session) -> Institution:
    """Create a second linked institution."""
    inst = Institution(
        institution_id="ins_109509",
        name="Tartan Bank",
        access_token="access-sandbox-abc",
        item_id="item-2",
        is_active=True,
        updated_at=datetime.now(timezone.utc) - timedelta(hours=48),
    )
    db.add(inst)
    db.commit()
    db.refresh(inst)
    return inst


@pytest.fixture
def account(db: Session, institution: Institution) -> Account:
    """Create a checking account at the first institution."""
    acc = Account(
        account_id="acc-checking",
        institution_id=institution.id,
        name="Plaid Checking",
        official_name="Plaid Gold Standard 0% Interest Checking",
        type="depository",
        subtype="checking",
        mask="0000",
        current_balance=Decimal("110.00"),
        available_balance=Decimal("100.00"),
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def transaction(db: Session, institution: Institution, account: Account) -> Transaction:
    """Create one expense in the checking account."""
    txn = make_transaction(
        db,
        institution,
        "txn-existing",
        "12.34",
        date.today() - timedelta(days=1),
        name="Corner Store",
        category="FOOD_AND_DRINK",
        merchant_name="Corner Store",
        account_id=account.account_id,
    )
    db.commit()
    db.refresh(txn)
    return txn
