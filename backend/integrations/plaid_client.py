"""Plaid API client.

This module implements the AggregationProvider protocol for Plaid via the
plaid-python SDK: hosted Link sessions, public token exchange, item and
account metadata, the cursor-based ``/transactions/sync`` feed, and the
sandbox-only helpers used to exercise webhooks.

Every SDK call goes through :meth:`PlaidClient._call`, which converts
``ApiException`` into the typed exceptions in :mod:`integrations.exceptions`.
"""

import json
import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_hosted_link import LinkTokenCreateHostedLink
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_update import LinkTokenCreateRequestUpdate
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.sandbox_item_fire_webhook_request import SandboxItemFireWebhookRequest
from plaid.model.transactions_refresh_request import TransactionsRefreshRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderMutationDuringPaginationError,
)
from integrations.provider_protocol import (
    ExchangeResult,
    LinkTokenResult,
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
    RemovedTransaction,
    TransactionSyncPage,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

_AUTH_ERROR_CODES = frozenset({"INVALID_ACCESS_TOKEN", "ITEM_LOGIN_REQUIRED"})
MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"


class PlaidClient:
    """Wrapper around the Plaid API implementing AggregationProvider."""

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        return PROVIDER_NAME

    @property
    def is_sandbox(self) -> bool:
        return self._environment.lower() == "sandbox"

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Link
    # ------------------------------------------------------------------

    def create_link_token(
        self,
        client_user_id: str,
        access_token: str | None = None,
        account_selection_enabled: bool = False,
    ) -> LinkTokenResult:
        """Create a hosted Plaid Link session.

        Args:
            client_user_id: Stable id of the end user (our Client id).
            access_token: When given, Link opens in update mode for that Item
                and no products are requested.
            account_selection_enabled: In update mode, let the user add or
                remove accounts (used after NEW_ACCOUNTS_AVAILABLE).

        Returns:
            LinkTokenResult with the token, hosted URL and expiration.
        """
        hosted_link: dict[str, Any] = {
            "url_lifetime_seconds": settings.PLAID_LINK_URL_LIFETIME_SECONDS,
        }
        if settings.PLAID_COMPLETION_REDIRECT_URI:
            hosted_link["completion_redirect_uri"] = settings.PLAID_COMPLETION_REDIRECT_URI

        kwargs: dict[str, Any] = {
            "user": LinkTokenCreateRequestUser(client_user_id=client_user_id),
            "client_name": settings.PLAID_CLIENT_NAME,
            "country_codes": [CountryCode(code) for code in settings.PLAID_COUNTRY_CODES],
            "language": "en",
            "hosted_link": LinkTokenCreateHostedLink(**hosted_link),
        }
        if settings.PLAID_WEBHOOK_URL:
            kwargs["webhook"] = settings.PLAID_WEBHOOK_URL
        if settings.PLAID_REDIRECT_URI:
            kwargs["redirect_uri"] = settings.PLAID_REDIRECT_URI

        if access_token:
            kwargs["access_token"] = access_token
            if account_selection_enabled:
                kwargs["update"] = LinkTokenCreateRequestUpdate(account_selection_enabled=True)
        else:
            kwargs["products"] = [Products(p) for p in settings.PLAID_PRODUCTS]
            if settings.PLAID_OPTIONAL_PRODUCTS:
                kwargs["optional_products"] = [Products(p) for p in settings.PLAID_OPTIONAL_PRODUCTS]

        api = self._get_api()
        response = self._call(
            "link_token_create", lambda: api.link_token_create(LinkTokenCreateRequest(**kwargs))
        ).to_dict()
        return LinkTokenResult(
            link_token=response["link_token"],
            expiration=_to_datetime(response.get("expiration")),
            hosted_link_url=response.get("hosted_link_url"),
        )

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        """Exchange a Plaid Link public_token for a permanent access_token."""
        api = self._get_api()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call("item_public_token_exchange", lambda: api.item_public_token_exchange(request))
        return ExchangeResult(
            access_token=response["access_token"],
            item_id=response["item_id"],
        )

    # ------------------------------------------------------------------
    # Item & accounts
    # ------------------------------------------------------------------

    def get_item(self, access_token: str) -> ProviderItem:
        """Fetch Item metadata plus the institution's display name.

        A failed institution-name lookup is logged and leaves the name empty;
        the Item itself is still returned.
        """
        api = self._get_api()
        response = self._call(
            "item_get", lambda: api.item_get(ItemGetRequest(access_token=access_token))
        ).to_dict()
        item = response.get("item") or {}
        if not item.get("item_id"):
            raise ProviderDataError("item_get returned no item_id", provider_name=PROVIDER_NAME)

        institution_id = item.get("institution_id")
        institution_name = item.get("institution_name")
        if institution_id and not institution_name:
            try:
                inst = self._call(
                    "institutions_get_by_id",
                    lambda: api.institutions_get_by_id(
                        InstitutionsGetByIdRequest(
                            institution_id=institution_id,
                            country_codes=[CountryCode(c) for c in settings.PLAID_COUNTRY_CODES],
                        )
                    ),
                ).to_dict()
                institution_name = (inst.get("institution") or {}).get("name")
            except (ProviderAPIError, ProviderConnectionError) as e:
                logger.warning("Failed to look up institution %s: %s", institution_id, e)

        error = item.get("error") or {}
        return ProviderItem(
            item_id=item["item_id"],
            institution_id=institution_id,
            institution_name=institution_name,
            consent_expiration_time=_to_datetime(item.get("consent_expiration_time")),
            error_code=error.get("error_code"),
        )

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch the current account list (with cached balances) for an Item."""
        api = self._get_api()
        response = self._call(
            "accounts_get", lambda: api.accounts_get(AccountsGetRequest(access_token=access_token))
        ).to_dict()

        accounts: list[ProviderAccount] = []
        for acct in response.get("accounts", []) or []:
            acct_id = acct.get("account_id")
            if not acct_id:
                continue
            balances = acct.get("balances") or {}
            accounts.append(ProviderAccount(
                account_id=acct_id,
                name=acct.get("name") or acct.get("official_name") or "Plaid Account",
                official_name=acct.get("official_name"),
                type=_enum_str(acct.get("type")),
                subtype=_enum_str(acct.get("subtype")),
                mask=acct.get("mask"),
                current_balance=_to_decimal(balances.get("current")),
                available_balance=_to_decimal(balances.get("available")),
                credit_limit=_to_decimal(balances.get("limit")),
                iso_currency_code=balances.get("iso_currency_code"),
            ))
        return accounts

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        self._call("item_remove", lambda: api.item_remove(ItemRemoveRequest(access_token=access_token)))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_transactions(self, access_token: str, cursor: str | None = None) -> TransactionSyncPage:
        """Fetch one page of ``/transactions/sync``.

        Raises:
            ProviderMutationDuringPaginationError: the caller must restart
                from the cursor its pagination started at.
        """
        api = self._get_api()
        params: dict[str, Any] = {
            "access_token": access_token,
            "count": settings.TRANSACTION_SYNC_PAGE_SIZE,
        }
        if cursor:  # Only include cursor if we have one
            params["cursor"] = cursor
        request = TransactionsSyncRequest(**params)
        response = self._call("transactions_sync", lambda: api.transactions_sync(request)).to_dict()

        return TransactionSyncPage(
            added=[_map_transaction(t) for t in response.get("added", []) or []],
            modified=[_map_transaction(t) for t in response.get("modified", []) or []],
            removed=[
                RemovedTransaction(
                    transaction_id=r["transaction_id"],
                    account_id=r.get("account_id"),
                )
                for r in response.get("removed", []) or []
                if r.get("transaction_id")
            ],
            has_more=bool(response.get("has_more")),
            next_cursor=response.get("next_cursor") or "",
        )

    def refresh_transactions(self, access_token: str) -> None:
        """Ask Plaid to check the institution for new transactions now.

        Results arrive later through a SYNC_UPDATES_AVAILABLE webhook.
        """
        api = self._get_api()
        self._call(
            "transactions_refresh",
            lambda: api.transactions_refresh(TransactionsRefreshRequest(access_token=access_token)),
        )

    # ------------------------------------------------------------------
    # Sandbox helpers
    # ------------------------------------------------------------------

    def fire_sandbox_webhook(self, access_token: str, webhook_code: str) -> None:
        """Make the sandbox deliver ``webhook_code`` for an Item."""
        if not self.is_sandbox:
            raise ProviderAPIError(
                "Sandbox webhooks are only available in the sandbox environment",
                provider_name=PROVIDER_NAME,
            )
        api = self._get_api()
        request = SandboxItemFireWebhookRequest(
            access_token=access_token,
            webhook_code=webhook_code,
        )
        self._call("sandbox_item_fire_webhook", lambda: api.sandbox_item_fire_webhook(request))

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _call(self, operation: str, fn: Callable[[], Any]) -> Any:
        """Invoke an SDK call, translating its failures."""
        try:
            return fn()
        except ApiException as e:
            raise self._map_plaid_error(e, operation) from e
        except (OSError, TimeoutError) as e:
            raise ProviderConnectionError(
                f"Plaid {operation} failed: {e}", provider_name=PROVIDER_NAME
            ) from e

    @staticmethod
    def _map_plaid_error(exc: ApiException, operation: str = "") -> Exception:
        """Map a Plaid ApiException to a typed provider exception."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (TypeError, ValueError, AttributeError):
            pass

        if operation:
            message = f"{operation}: {message}"

        if error_code == MUTATION_DURING_PAGINATION:
            return ProviderMutationDuringPaginationError(
                message, provider_name=PROVIDER_NAME, status_code=status, error_code=error_code
            )
        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            return ProviderAuthError(message, provider_name=PROVIDER_NAME, error_code=error_code)
        return ProviderAPIError(
            message, provider_name=PROVIDER_NAME, status_code=status or None, error_code=error_code or None
        )


# ----------------------------------------------------------------------
# Mapping helpers
# ----------------------------------------------------------------------


def _map_transaction(txn: dict) -> ProviderTransaction:
    """Map a ``/transactions/sync`` transaction dict to a ProviderTransaction."""
    pfc = txn.get("personal_finance_category") or {}
    amount = _to_decimal(txn.get("amount"))
    if amount is None:
        raise ProviderDataError(
            f"Transaction {txn.get('transaction_id')} has no amount", provider_name=PROVIDER_NAME
        )
    return ProviderTransaction(
        transaction_id=txn["transaction_id"],
        account_id=txn.get("account_id", ""),
        amount=amount,
        transaction_date=_to_date(txn.get("date")),
        transaction_datetime=_to_datetime(txn.get("datetime")),
        authorized_date=_to_date(txn.get("authorized_date")),
        name=txn.get("name"),
        merchant_name=txn.get("merchant_name"),
        original_description=txn.get("original_description"),
        logo_url=txn.get("logo_url"),
        website=txn.get("website"),
        iso_currency_code=txn.get("iso_currency_code"),
        payment_channel=_enum_str(txn.get("payment_channel")),
        transaction_code=_enum_str(txn.get("transaction_code")),
        pending=bool(txn.get("pending")),
        pending_transaction_id=txn.get("pending_transaction_id"),
        category_primary=pfc.get("primary"),
        category_detailed=pfc.get("detailed"),
        category_confidence=pfc.get("confidence_level"),
    )


def _enum_str(value) -> str | None:
    """SDK enums serialize to plain strings via to_dict(); tolerate both."""
    if value is None:
        return None
    return str(getattr(value, "value", value))


def _to_decimal(value) -> Decimal | None:
    """Convert a value to Decimal, returning None on failure."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def _to_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
