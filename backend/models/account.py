"""Account model - represents one bank account under a linked Item."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class Account(Base):
    """A financial account reported by Plaid for an Item.

    Accounts are deactivated (``is_active=False``) rather than deleted when
    Plaid stops reporting them.  On re-link Plaid may issue a new
    ``external_account_id`` for the same real account; the link reconciler
    moves the new id onto the existing row instead of inserting a duplicate.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(
        String(36), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_account_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    account_type = Column(String, nullable=True)  # e.g. "depository", "credit"
    account_subtype = Column(String, nullable=True)  # e.g. "checking", "credit card"
    mask = Column(String, nullable=True)  # last 2-4 digits

    current_balance = Column(Numeric(18, 2), nullable=True)
    available_balance = Column(Numeric(18, 2), nullable=True)
    credit_limit = Column(Numeric(18, 2), nullable=True)
    iso_currency_code = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    last_updated_at = Column(DateTime, nullable=True)  # last balance refresh from Plaid
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    item = relationship("Item", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")
