"""Webhook service - the inbound webhook pipeline.

record (dedup) -> classify -> route -> mark processed.  The event row is
committed before routing so the idempotency record survives a failed
handler; handler failures are stored on the event instead of being
raised, because Plaid redelivers anything that is not answered with 200.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from models.webhook_event import WebhookEvent
from services.exceptions import InvalidWebhookError
from services.item_status_service import ItemStatusService
from services.link_reconciler_service import LinkReconcilerService
from services.webhook_classifier import ClassifiedWebhook, WebhookCategory, classify_webhook
from services.webhook_event_service import WebhookEventService

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_DUPLICATE = "duplicate"
STATUS_ERROR = "error"


@dataclass
class WebhookOutcome:
    status: str
    event_id: str
    message: str = ""


class WebhookService:
    """Process one inbound Plaid webhook end to end."""

    def __init__(
        self,
        reconciler: LinkReconcilerService,
        status_service: ItemStatusService | None = None,
        event_service: WebhookEventService | None = None,
    ):
        self.reconciler = reconciler
        self.status_service = status_service or ItemStatusService()
        self.event_service = event_service or WebhookEventService()

    @staticmethod
    def validate(payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise InvalidWebhookError("Webhook body must be a JSON object")
        missing = [k for k in ("webhook_type", "webhook_code") if not payload.get(k)]
        if missing:
            raise InvalidWebhookError(f"Webhook is missing {', '.join(missing)}")
        return payload

    def handle(
        self,
        db: Session,
        payload: Any,
        received_at: datetime | None = None,
    ) -> WebhookOutcome:
        """Run the pipeline for one delivery.

        Raises:
            InvalidWebhookError: ``webhook_type`` or ``webhook_code`` missing.
            SQLAlchemyError: the event could not be recorded (sender retries).
        """
        payload = self.validate(payload)

        recorded = self.event_service.record_event(db, payload, received_at)
        db.commit()
        event_id = recorded.event.id
        if not recorded.is_new:
            return WebhookOutcome(STATUS_DUPLICATE, event_id, "duplicate delivery")

        classified = classify_webhook(payload)
        try:
            status, message, error = self._route(db, classified)
            self.event_service.mark_processed(db, recorded.event, error)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception(
                "Webhook %s/%s failed (event %s)", classified.webhook_type, classified.webhook_code, event_id,
            )
            event = db.get(WebhookEvent, event_id)
            self.event_service.mark_processed(db, event, str(e) or e.__class__.__name__)
            db.commit()
            return WebhookOutcome(STATUS_ERROR, event_id, str(e))

        return WebhookOutcome(status, event_id, message)

    def _route(self, db: Session, classified: ClassifiedWebhook) -> tuple[str, str, str | None]:
        """Dispatch to the reconciler or the status updater.

        Returns:
            ``(response status, message, error to store on the event)``
        """
        if classified.category == WebhookCategory.SESSION_FINISHED:
            outcome = self.reconciler.handle_session_finished(db, classified)
            status = STATUS_DUPLICATE if outcome.status == "duplicate" else STATUS_SUCCESS
            return status, outcome.message, outcome.error_summary

        result = self.status_service.apply(db, classified)
        return STATUS_SUCCESS, result.message, None
