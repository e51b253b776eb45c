"""Plaid Link API endpoints.

Provides the server-side endpoints for the hosted Plaid Link flow:
creating link tokens (new links and update mode), listing a client's
linked Items, and firing sandbox webhooks for testing.  The
session-finished result of a link arrives through the webhook endpoint
in :mod:`api.webhooks`.
"""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, selectinload

from config import settings
from database import get_db
from api.helpers import get_or_404
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.plaid_client import PlaidClient
from models.client import Client
from models.item import Item
from schemas import FireWebhookRequest, ItemResponse, LinkTokenRequest, LinkTokenResponse
from services.encryption_service import EncryptionError, EncryptionService, KeyCache
from services.exceptions import NotFoundError
from services.link_token_service import LinkTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


# ------------------------------------------------------------------
# Dependencies (overridable in tests)
# ------------------------------------------------------------------


def _get_plaid_client() -> PlaidClient:
    """Dependency for injecting the Plaid client."""
    return PlaidClient()


@lru_cache
def get_key_cache() -> KeyCache:
    """Process-wide encryption key cache."""
    return KeyCache()


def get_encryption_service(key_cache: KeyCache = Depends(get_key_cache)) -> EncryptionService:
    return EncryptionService(key_cache=key_cache)


def get_link_token_service(
    client: PlaidClient = Depends(_get_plaid_client),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> LinkTokenService:
    return LinkTokenService(provider=client, encryption=encryption)


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    body: LinkTokenRequest,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
    service: LinkTokenService = Depends(get_link_token_service),
):
    """Create a hosted Link session for a client (update mode with ``item_id``)."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        created = service.create_link_token(
            db,
            client_id=body.client_id,
            item_id=body.item_id,
            account_selection_enabled=body.account_selection_enabled,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EncryptionError as e:
        logger.error("Cannot decrypt credential for update-mode link: %s", e)
        raise HTTPException(status_code=500, detail="Stored credential could not be decrypted")
    except ProviderError as e:
        error_detail = str(e)
        # Surface actionable hint for the most common error
        if "INVALID_API_KEYS" in error_detail:
            hint = (
                "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
                "matches your keys (sandbox or production). "
                "Each environment has different secrets."
            )
            logger.error("Plaid INVALID_API_KEYS: %s", hint)
            raise HTTPException(status_code=400, detail=hint)
        logger.error("Failed to create Plaid link token: %s", e)
        raise HTTPException(status_code=502, detail="Failed to create link token")

    db.commit()
    return LinkTokenResponse(
        link_token=created.link_token,
        hosted_link_url=created.hosted_link_url,
        expires_at=created.expires_at,
        client_name=created.client_name,
        is_update_mode=created.is_update_mode,
    )


@router.get("/items", response_model=list[ItemResponse])
def list_items(
    client_id: str,
    include_archived: bool = False,
    db: Session = Depends(get_db),
):
    """List a client's linked Items with their accounts."""
    get_or_404(db, Client, client_id, detail=f"Client not found: {client_id}")
    query = (
        db.query(Item)
        .options(selectinload(Item.accounts))
        .filter(Item.client_id == client_id)
    )
    if not include_archived:
        query = query.filter(Item.is_archived.is_(False))
    return query.order_by(Item.created_at.desc()).all()


@router.post("/sandbox/fire-webhook")
def fire_sandbox_webhook(
    body: FireWebhookRequest,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    """Ask the Plaid sandbox to deliver a test webhook for an Item."""
    if not settings.is_sandbox:
        raise HTTPException(status_code=403, detail="Sandbox webhooks are disabled outside sandbox")

    item = get_or_404(db, Item, body.item_id, detail=f"Item not found: {body.item_id}")
    if item.access_token is None:
        raise HTTPException(status_code=409, detail="Item has no credential")

    try:
        access_token = encryption.decrypt(db, item.access_token, item.access_token_key_id)
        client.fire_sandbox_webhook(access_token, body.webhook_code)
    except EncryptionError as e:
        logger.error("Cannot decrypt credential for item %s: %s", item.id, e)
        raise HTTPException(status_code=500, detail="Stored credential could not be decrypted")
    except ProviderAuthError as e:
        raise HTTPException(status_code=502, detail=f"Plaid authentication failed: {e}")
    except ProviderError as e:
        logger.warning("Sandbox webhook failed for item %s: %s", item.id, e)
        raise HTTPException(status_code=502, detail="Plaid rejected the sandbox webhook request")

    logger.info("Fired sandbox webhook %s for item %s", body.webhook_code, item.id)
    return {"status": "ok", "item_id": item.id, "webhook_code": body.webhook_code}
