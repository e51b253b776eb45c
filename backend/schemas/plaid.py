"""Pydantic schemas for Plaid Link and Item endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class LinkTokenRequest(BaseModel):
    """Request body for creating a Link session.

    ``item_id`` switches Link to update mode for an existing Item.
    """

    client_id: str
    item_id: Optional[str] = None
    account_selection_enabled: bool = False


class LinkTokenResponse(BaseModel):
    link_token: str
    hosted_link_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    client_name: str
    is_update_mode: bool


class ItemAccountResponse(BaseModel):
    id: str
    external_account_id: str
    name: str
    account_type: Optional[str] = None
    account_subtype: Optional[str] = None
    mask: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}


class ItemResponse(BaseModel):
    """Response schema for a linked Item (never includes the credential)."""

    id: str
    client_id: str
    external_item_id: Optional[str] = None
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    status: str
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    has_sync_updates: bool
    is_archived: bool
    last_successful_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    accounts: list[ItemAccountResponse] = []

    model_config = {"from_attributes": True}


class FireWebhookRequest(BaseModel):
    item_id: str
    webhook_code: str = "SYNC_UPDATES_AVAILABLE"


class WebhookResponse(BaseModel):
    """Body returned to Plaid for every webhook delivery."""

    status: str  # "success" | "duplicate" | "error"
    event_id: Optional[str] = None
    message: Optional[str] = None
