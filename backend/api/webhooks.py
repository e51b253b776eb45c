"""Plaid webhook ingress endpoint."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.plaid import _get_plaid_client, get_encryption_service
from database import get_db
from integrations.plaid_client import PlaidClient
from schemas import WebhookResponse
from services.encryption_service import EncryptionService
from services.exceptions import InvalidWebhookError
from services.link_reconciler_service import LinkReconcilerService
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["webhooks"])


def get_webhook_service(
    client: PlaidClient = Depends(_get_plaid_client),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> WebhookService:
    """Dependency for injecting the webhook pipeline (overridable in tests)."""
    return WebhookService(reconciler=LinkReconcilerService(provider=client, encryption=encryption))


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    service: WebhookService = Depends(get_webhook_service),
):
    """Receive a Plaid webhook.

    Answers 200 for every delivery that could be logged, including
    duplicates and deliveries whose processing failed; Plaid redelivers
    anything else.  400 for malformed bodies, 500 when the event could
    not be recorded.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")

    try:
        # The pipeline is blocking; keep it off the event loop.
        outcome = await run_in_threadpool(service.handle, db, payload)
    except InvalidWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        logger.error("Could not record webhook", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook could not be recorded")

    return WebhookResponse(status=outcome.status, event_id=outcome.event_id, message=outcome.message)

