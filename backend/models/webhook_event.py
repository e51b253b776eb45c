"""WebhookEvent model - append-only log of inbound Plaid webhooks."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class WebhookEvent(Base):
    """One inbound webhook delivery.

    ``fingerprint`` is unique; a second delivery of the same logical event
    collides on it and is answered as a duplicate without side effects.
    """

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    webhook_type = Column(String, nullable=False)
    webhook_code = Column(String, nullable=False)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=True, index=True)
    external_item_id = Column(String, nullable=True, index=True)
    fingerprint = Column(String(64), unique=True, nullable=False)
    payload = Column(Text, nullable=False)  # raw JSON body
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)
