"""Transaction model - one ledger entry under an Account."""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now

TRANSACTION_STATUSES = ("added", "modified", "removed")


class Transaction(Base):
    """A bank transaction synchronized from Plaid.

    ``id`` is durable: when a pending transaction posts, Plaid issues a new
    transaction id and the same row is updated in place, so downstream
    ledger references survive the transition.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_transaction_id = Column(String, unique=True, index=True, nullable=False)
    pending_external_transaction_id = Column(String, nullable=True)

    transaction_date = Column(Date, nullable=True)
    transaction_datetime = Column(DateTime, nullable=True)
    authorized_date = Column(Date, nullable=True)
    posted_date = Column(Date, nullable=True)

    merchant_name = Column(String, nullable=True)
    original_description = Column(String, nullable=True)
    merchant_logo_url = Column(String, nullable=True)
    merchant_website = Column(String, nullable=True)

    amount = Column(Numeric(18, 2), nullable=False)  # Plaid sign: positive = money out
    iso_currency_code = Column(String, nullable=True)
    payment_channel = Column(String, nullable=True)
    transaction_code = Column(String, nullable=True)

    pending = Column(Boolean, default=False, nullable=False)
    is_transfer = Column(Boolean, default=False, nullable=False)
    is_removed = Column(Boolean, default=False, nullable=False)

    primary_category = Column(String, nullable=True)
    detailed_category = Column(String, nullable=True)
    confidence_score = Column(Numeric(4, 2), nullable=True)
    transaction_status = Column(String, nullable=False, default="added")

    # Downstream ledger bookkeeping
    processed_into_ledger = Column(Boolean, default=False, nullable=False)
    updated_since_process = Column(Boolean, default=False, nullable=False)

    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)
    archive_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    account = relationship("Account", back_populates="transactions")
