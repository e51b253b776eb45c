"""Pydantic schemas for transaction sync endpoints."""

from typing import Optional

from pydantic import BaseModel


class TransactionSyncResponse(BaseModel):
    item_id: str
    external_item_id: Optional[str] = None
    added: int
    modified: int
    removed: int
    skipped: int = 0
    cursor: Optional[str] = None
    is_initial_sync: bool

    model_config = {"from_attributes": True}


class BulkSyncItemResponse(BaseModel):
    item_id: str
    success: bool
    result: Optional[TransactionSyncResponse] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class BulkSyncResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    total_added: int
    total_modified: int
    total_removed: int
    items: list[BulkSyncItemResponse]


class RefreshResponse(BaseModel):
    item_id: str
    status: str = "refresh_requested"
