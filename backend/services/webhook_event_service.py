"""Webhook event log - the idempotency gate for inbound webhooks."""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.item import Item
from models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


@dataclass
class RecordedEvent:
    is_new: bool
    event: WebhookEvent


def compute_fingerprint(
    payload: dict[str, Any],
    received_at: datetime,
    bucket_seconds: int | None = None,
) -> str:
    """Deterministic SHA-256 fingerprint of one logical webhook delivery.

    Combines type, code, item id, account id, link session id and the
    arrival time truncated to ``bucket_seconds`` (one minute by default).
    """
    bucket_seconds = bucket_seconds or settings.WEBHOOK_DEDUP_BUCKET_SECONDS
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    bucket = int(received_at.timestamp()) // bucket_seconds

    parts = [
        str(payload.get("webhook_type") or ""),
        str(payload.get("webhook_code") or ""),
        str(payload.get("item_id") or "no-item"),
        str(payload.get("account_id") or ""),
        str(payload.get("link_session_id") or ""),
        str(bucket),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class WebhookEventService:
    """Record inbound webhooks and detect duplicate deliveries."""

    def __init__(self, bucket_seconds: int | None = None):
        self.bucket_seconds = bucket_seconds or settings.WEBHOOK_DEDUP_BUCKET_SECONDS

    def record_event(
        self,
        db: Session,
        payload: dict[str, Any],
        received_at: datetime | None = None,
    ) -> RecordedEvent:
        """Insert the event unless its fingerprint is already logged.

        A concurrent delivery that wins the insert race surfaces here as an
        ``IntegrityError`` on the unique fingerprint; the existing row is
        re-read and reported as a duplicate.  Any other store failure
        propagates to the caller.
        """
        received_at = received_at or datetime.now(timezone.utc)
        fingerprint = compute_fingerprint(payload, received_at, self.bucket_seconds)

        existing = db.query(WebhookEvent).filter(WebhookEvent.fingerprint == fingerprint).first()
        if existing is not None:
            logger.info(
                "Duplicate webhook %s/%s (event %s)",
                existing.webhook_type, existing.webhook_code, existing.id,
            )
            return RecordedEvent(is_new=False, event=existing)

        external_item_id = payload.get("item_id")
        item_id = None
        if external_item_id:
            item = (
                db.query(Item)
                .filter(Item.external_item_id == external_item_id)
                .order_by(Item.is_archived, Item.updated_at.desc())
                .first()
            )
            item_id = item.id if item else None

        event = WebhookEvent(
            webhook_type=str(payload.get("webhook_type")),
            webhook_code=str(payload.get("webhook_code")),
            item_id=item_id,
            external_item_id=external_item_id,
            fingerprint=fingerprint,
            payload=json.dumps(payload, default=str),
            processed=False,
        )
        try:
            with db.begin_nested():
                db.add(event)
        except IntegrityError:
            existing = db.query(WebhookEvent).filter(WebhookEvent.fingerprint == fingerprint).first()
            if existing is None:
                raise
            logger.info("Webhook fingerprint race lost; treating as duplicate (event %s)", existing.id)
            return RecordedEvent(is_new=False, event=existing)

        logger.info(
            "Recorded webhook %s/%s for item %s (event %s)",
            event.webhook_type, event.webhook_code, external_item_id or "-", event.id,
        )
        return RecordedEvent(is_new=True, event=event)

    @staticmethod
    def mark_processed(db: Session, event: WebhookEvent, error_message: str | None = None) -> None:
        """Mark the event handled, storing the failure message if any."""
        event.processed = True
        event.processed_at = datetime.now(timezone.utc)
        event.error_message = error_message
        db.flush()
