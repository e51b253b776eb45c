"""Transaction sync API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.plaid import _get_plaid_client, get_encryption_service
from database import get_db
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.plaid_client import PlaidClient
from schemas import (
    BulkSyncItemResponse,
    BulkSyncResponse,
    RefreshResponse,
    TransactionSyncResponse,
)
from services.encryption_service import EncryptionError, EncryptionService
from services.exceptions import (
    ItemNotSyncableError,
    NoActiveAccountsError,
    NotFoundError,
    SyncPaginationError,
)
from services.transaction_sync_service import TransactionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


def get_transaction_sync_service(
    client: PlaidClient = Depends(_get_plaid_client),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> TransactionSyncService:
    """Dependency for injecting the sync engine (overridable in tests)."""
    return TransactionSyncService(provider=client, encryption=encryption)


def _raise_for_sync_error(item_id: str, e: Exception) -> None:
    """Translate a sync failure into an HTTPException.

    Raises:
        HTTPException:
            - 404 Not Found: Item does not exist
            - 409 Conflict: Item cannot be synced in its current state
            - 500 Internal Server Error: credential cannot be decrypted
            - 502 Bad Gateway: Plaid error or pagination retries exhausted
    """
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ItemNotSyncableError, NoActiveAccountsError)):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, SyncPaginationError):
        logger.warning("Sync pagination retries exhausted for item %s", item_id)
        raise HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ProviderAuthError):
        logger.warning("Plaid auth error during sync of item %s: %s", item_id, e)
        raise HTTPException(
            status_code=502,
            detail="Plaid authentication failed for this item. Re-link it in update mode.",
        )
    if isinstance(e, ProviderError):
        logger.warning("Plaid error during sync of item %s: %s", item_id, e)
        raise HTTPException(
            status_code=502,
            detail="A Plaid error occurred during sync. Check the logs for details.",
        )
    if isinstance(e, EncryptionError):
        logger.error("Credential for item %s could not be decrypted: %s", item_id, e)
        raise HTTPException(status_code=500, detail="Stored credential could not be decrypted")
    raise e


@router.post("/sync/{item_id}", response_model=TransactionSyncResponse)
def sync_item(
    item_id: str,
    db: Session = Depends(get_db),
    service: TransactionSyncService = Depends(get_transaction_sync_service),
):
    """Run one transaction sync sweep for an Item."""
    try:
        return service.sync_item(db, item_id)
    except Exception as e:
        _raise_for_sync_error(item_id, e)


@router.post("/sync", response_model=BulkSyncResponse)
def sync_pending(
    limit: int = 10,
    client_id: Optional[str] = None,
    db: Session = Depends(get_db),
    service: TransactionSyncService = Depends(get_transaction_sync_service),
):
    """Sync every Item flagged with pending updates (optionally for one client)."""
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    bulk = service.sync_pending_items(db, client_id=client_id, limit=limit)
    return BulkSyncResponse(
        processed=len(bulk.items),
        succeeded=bulk.succeeded,
        failed=bulk.failed,
        total_added=bulk.total_added,
        total_modified=bulk.total_modified,
        total_removed=bulk.total_removed,
        items=[
            BulkSyncItemResponse(
                item_id=r.item_id,
                success=r.success,
                result=TransactionSyncResponse.model_validate(r.result) if r.result else None,
                error=r.error,
            )
            for r in bulk.items
        ],
    )


@router.post("/refresh/{item_id}", response_model=RefreshResponse)
def refresh_item(
    item_id: str,
    db: Session = Depends(get_db),
    service: TransactionSyncService = Depends(get_transaction_sync_service),
):
    """Ask Plaid to refresh an Item's transactions now."""
    try:
        service.refresh_transactions(db, item_id)
    except Exception as e:
        _raise_for_sync_error(item_id, e)
    return RefreshResponse(item_id=item_id)
