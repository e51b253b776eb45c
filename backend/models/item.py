"""Item model - one Plaid connection to one institution for one client."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    text,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now

ITEM_STATUSES = ("active", "login_required", "error", "needs_update", "archived")


class Item(Base):
    """A linked institution connection.

    The Plaid access token is stored encrypted (see
    ``services.encryption_service``) together with the id of the key that
    encrypted it.  Items are archived instead of deleted; the two partial
    unique indexes only consider live (non-archived) rows so an archived
    Item can later be restored by a new link at the same institution.
    """

    __tablename__ = "items"
    __table_args__ = (
        Index(
            "uix_items_live_external_item_id",
            "external_item_id",
            unique=True,
            sqlite_where=text("is_archived = 0"),
            postgresql_where=text("is_archived = false"),
        ),
        Index(
            "uix_items_live_client_institution",
            "client_id",
            "institution_id",
            unique=True,
            sqlite_where=text("is_archived = 0"),
            postgresql_where=text("is_archived = false"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    external_item_id = Column(String, nullable=True)  # Plaid item_id, set after exchange
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)

    access_token = Column(LargeBinary, nullable=True)  # nonce || ciphertext || tag
    access_token_key_id = Column(
        Integer, ForeignKey("encryption_keys.key_id"), nullable=True
    )

    status = Column(String, nullable=False, default="active")
    last_error_code = Column(String, nullable=True)
    last_error_message = Column(String, nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    consent_expires_at = Column(DateTime, nullable=True)

    # Transaction sync state
    has_sync_updates = Column(Boolean, default=False, nullable=False)
    transactions_cursor = Column(String, nullable=True)
    cursor_updated_at = Column(DateTime, nullable=True)
    last_successful_sync_at = Column(DateTime, nullable=True)

    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    client = relationship("Client", back_populates="items")
    accounts = relationship("Account", back_populates="item")

    def clear_error(self) -> None:
        self.last_error_code = None
        self.last_error_message = None
        self.last_error_at = None

    def archive(self) -> None:
        """Soft-delete: status and flag always move together."""
        self.status = "archived"
        self.is_archived = True
        self.archived_at = utc_now()

    def restore(self) -> None:
        self.status = "active"
        self.is_archived = False
        self.archived_at = None
