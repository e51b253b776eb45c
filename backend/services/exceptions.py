"""Typed exceptions raised by the sync and reconciliation services.

The API layer maps these to HTTP status codes; provider failures use the
hierarchy in :mod:`integrations.exceptions` instead.
"""


class ServiceError(Exception):
    """Base class for service-level failures."""


class NotFoundError(ServiceError):
    """A referenced record does not exist."""


class ClientNotFoundError(NotFoundError):
    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client not found: {client_id}")


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class LinkTokenNotFoundError(NotFoundError):
    def __init__(self, link_token: str | None):
        self.link_token = link_token
        super().__init__(f"Link token not found: {link_token}")


class ItemNotSyncableError(ServiceError):
    """The Item cannot be synced in its current state (archived, error, login required)."""

    def __init__(self, item_id: str, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} cannot be synced while {status}")


class NoActiveAccountsError(ServiceError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item {item_id} has no active accounts")


class SyncPaginationError(ServiceError):
    """Transaction data kept changing during pagination; retries exhausted."""

    def __init__(self, item_id: str, attempts: int):
        self.item_id = item_id
        self.attempts = attempts
        super().__init__(
            f"Transaction sync for item {item_id} failed after {attempts} attempts: "
            "data changed during pagination"
        )


class InvalidWebhookError(ServiceError):
    """The webhook payload is missing required fields."""
