"""Provider protocol definitions for bank aggregation.

This module defines the normalized data shapes and the interface an
aggregation provider (Plaid, or a test double) must implement for the
link reconciler and the transaction sync engine to work with it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol


@dataclass
class LinkTokenResult:
    """A newly created link session."""

    link_token: str
    expiration: datetime | None = None
    hosted_link_url: str | None = None


@dataclass
class ExchangeResult:
    """Durable credential returned for a public token."""

    access_token: str
    item_id: str  # Provider's external item id


@dataclass
class ProviderItem:
    """Item/institution metadata for a credential."""

    item_id: str
    institution_id: str | None = None
    institution_name: str | None = None
    consent_expiration_time: datetime | None = None
    error_code: str | None = None


@dataclass
class ProviderAccount:
    """Normalized account data from the provider."""

    account_id: str  # Provider's external ID for the account
    name: str
    official_name: str | None = None
    type: str | None = None  # e.g. "depository"
    subtype: str | None = None  # e.g. "checking"
    mask: str | None = None
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None
    credit_limit: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class ProviderTransaction:
    """Normalized transaction from the provider's delta feed."""

    transaction_id: str
    account_id: str
    amount: Decimal
    transaction_date: date | None = None
    transaction_datetime: datetime | None = None
    authorized_date: date | None = None
    name: str | None = None
    merchant_name: str | None = None
    original_description: str | None = None
    logo_url: str | None = None
    website: str | None = None
    iso_currency_code: str | None = None
    payment_channel: str | None = None
    transaction_code: str | None = None
    pending: bool = False
    pending_transaction_id: str | None = None  # predecessor pending transaction
    category_primary: str | None = None
    category_detailed: str | None = None
    category_confidence: str | None = None  # VERY_HIGH, HIGH, MEDIUM, LOW, UNKNOWN


@dataclass
class RemovedTransaction:
    transaction_id: str
    account_id: str | None = None


@dataclass
class TransactionSyncPage:
    """One page of the cursor-based transaction delta feed."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[RemovedTransaction] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str = ""


class AggregationProvider(Protocol):
    """Protocol that bank aggregation clients must implement.

    All methods are synchronous and raise subclasses of
    :class:`integrations.exceptions.ProviderError` on failure.
    """

    def is_configured(self) -> bool:
        """Return True if credentials are configured."""
        ...

    def create_link_token(
        self,
        client_user_id: str,
        access_token: str | None = None,
        account_selection_enabled: bool = False,
    ) -> LinkTokenResult:
        """Create a hosted link session; update mode when ``access_token`` is given."""
        ...

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        ...

    def get_item(self, access_token: str) -> ProviderItem:
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        ...

    def sync_transactions(self, access_token: str, cursor: str | None = None) -> TransactionSyncPage:
        """Fetch one page of transaction deltas after ``cursor``."""
        ...

    def remove_item(self, access_token: str) -> None:
        """Revoke the credential at the provider."""
        ...

    def refresh_transactions(self, access_token: str) -> None:
        ...

    def fire_sandbox_webhook(self, access_token: str, webhook_code: str) -> None:
        """Ask the sandbox to deliver a test webhook (non-production only)."""
        ...
