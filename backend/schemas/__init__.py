"""Pydantic request/response schemas."""

from .plaid import (
    FireWebhookRequest,
    ItemAccountResponse,
    ItemResponse,
    LinkTokenRequest,
    LinkTokenResponse,
    WebhookResponse,
)
from .transaction_sync import (
    BulkSyncItemResponse,
    BulkSyncResponse,
    RefreshResponse,
    TransactionSyncResponse,
)

__all__ = [
    "BulkSyncItemResponse",
    "BulkSyncResponse",
    "FireWebhookRequest",
    "ItemAccountResponse",
    "ItemResponse",
    "LinkTokenRequest",
    "LinkTokenResponse",
    "RefreshResponse",
    "TransactionSyncResponse",
    "WebhookResponse",
]
