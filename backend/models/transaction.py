"""Transaction model - one reconciled ledger entry."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base


class Transaction(Base):
    """A financial transaction reconciled from the Plaid transaction feed.

    ``transaction_id`` is Plaid's id and the natural key for upserts.
    Sign convention follows Plaid: positive amount is an outflow (expense),
    negative amount is an inflow (income).
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_institution_date", "institution_id", "date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String, unique=True, index=True, nullable=False)
    account_id = Column(String, index=True, nullable=True)  # Plaid account id
    institution_id = Column(Integer, ForeignKey("institutions.id"), nullable=False)
    amount = Column(Numeric(18, 4), nullable=False)
    date = Column(Date, nullable=False)
    name = Column(String, nullable=False)
    merchant_name = Column(String, nullable=True)
    category_primary = Column(String, nullable=True)
    category_detailed = Column(String, nullable=True)
    type = Column(String, nullable=False)  # "expense" | "income"
    pending = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    institution = relationship("Institution", back_populates="transactions")
