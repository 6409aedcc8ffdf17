"""Institution model - a bank or brokerage linked through Plaid."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from database import Base


class Institution(Base):
    """A linked financial institution (one Plaid Item).

    Each institution linked via Plaid Link gets its own long-lived
    access_token, used for every account and transaction sync.
    ``updated_at`` doubles as the last successful sync time.
    """

    __tablename__ = "institutions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    institution_id = Column(String, unique=True, index=True, nullable=False)  # Plaid institution id
    name = Column(String, nullable=False)
    access_token = Column(String, nullable=False)
    item_id = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    accounts = relationship("Account", back_populates="institution")
    transactions = relationship("Transaction", back_populates="institution")
