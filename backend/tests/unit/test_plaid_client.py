"""Unit tests for PlaidClient."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from plaid import ApiException

from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderMutationDuringPaginationError,
)
from integrations.plaid_client import (
    MUTATION_DURING_PAGINATION,
    PlaidClient,
    _map_transaction,
    _to_date,
    _to_datetime,
    _to_decimal,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _configure(ms, client_id="test-client-id", secret="test-secret"):
    ms.PLAID_CLIENT_ID = client_id
    ms.PLAID_SECRET = secret
    ms.PLAID_ENVIRONMENT = "sandbox"
    ms.PLAID_CLIENT_NAME = "Practice Bank Sync"
    ms.PLAID_WEBHOOK_URL = "https://example.com/api/plaid/webhook"
    ms.PLAID_REDIRECT_URI = ""
    ms.PLAID_COMPLETION_REDIRECT_URI = ""
    ms.PLAID_LINK_URL_LIFETIME_SECONDS = 14400
    ms.PLAID_PRODUCTS = ["transactions"]
    ms.PLAID_OPTIONAL_PRODUCTS = []
    ms.PLAID_COUNTRY_CODES = ["US"]
    ms.TRANSACTION_SYNC_PAGE_SIZE = 500


@pytest.fixture
def mock_settings():
    """Fixture that mocks settings with configured Plaid credentials."""
    with patch("integrations.plaid_client.settings") as ms:
        _configure(ms)
        yield ms


@pytest.fixture
def mock_empty_settings():
    """Fixture that mocks settings with empty Plaid credentials."""
    with patch("integrations.plaid_client.settings") as ms:
        _configure(ms, client_id="", secret="")
        yield ms


@pytest.fixture
def mock_plaid_api():
    """Fixture that provides a mocked PlaidApi."""
    with patch("integrations.plaid_client.PlaidApi") as MockCls:
        api_instance = MagicMock()
        MockCls.return_value = api_instance
        yield api_instance


@pytest.fixture
def client(mock_settings, mock_plaid_api):
    with patch("integrations.plaid_client.ApiClient"):
        yield PlaidClient()


def _response(data):
    response = MagicMock()
    response.to_dict.return_value = data
    return response


def _api_exception(status, body):
    exc = ApiException(status=status, reason="Error")
    exc.body = body
    return exc


SAMPLE_TRANSACTION = {
    "transaction_id": "txn-1",
    "account_id": "acct-1",
    "amount": 89.4,
    "date": "2024-03-01",
    "datetime": "2024-03-01T11:00:00Z",
    "authorized_date": "2024-02-29",
    "name": "SparkFun",
    "merchant_name": "SparkFun Electronics",
    "original_description": "SPARKFUN ELEC 8005551234",
    "logo_url": "https://plaid-merchant-logos.plaid.com/sparkfun.png",
    "website": "sparkfun.com",
    "iso_currency_code": "USD",
    "payment_channel": "online",
    "transaction_code": None,
    "pending": False,
    "pending_transaction_id": "txn-0",
    "personal_finance_category": {
        "primary": "GENERAL_MERCHANDISE",
        "detailed": "GENERAL_MERCHANDISE_ELECTRONICS",
        "confidence_level": "VERY_HIGH",
    },
}


# ---------------------------------------------------------------------------
# Tests: Configuration
# ---------------------------------------------------------------------------


class TestPlaidClientConfig:
    def test_is_configured_with_credentials(self, mock_settings):
        assert PlaidClient().is_configured() is True

    def test_is_not_configured_without_credentials(self, mock_empty_settings):
        assert PlaidClient().is_configured() is False

    def test_provider_name(self, mock_settings):
        assert PlaidClient().provider_name == "Plaid"

    def test_is_sandbox(self, mock_settings):
        assert PlaidClient().is_sandbox is True
        assert PlaidClient(environment="production").is_sandbox is False

    def test_api_created_once(self, mock_settings):
        with patch("integrations.plaid_client.PlaidApi") as MockCls, patch("integrations.plaid_client.ApiClient"):
            client = PlaidClient()
            client._get_api()
            client._get_api()
        MockCls.assert_called_once()


# ---------------------------------------------------------------------------
# Tests: Link
# ---------------------------------------------------------------------------


class TestLinkFlow:
    def test_create_link_token(self, client, mock_plaid_api):
        mock_plaid_api.link_token_create.return_value = _response({
            "link_token": "link-sandbox-abc123",
            "expiration": "2024-03-01T16:00:00Z",
            "hosted_link_url": "https://hosted.plaid.com/link/abc",
        })

        with patch("integrations.plaid_client.LinkTokenCreateRequest") as Req, \
                patch("integrations.plaid_client.LinkTokenCreateHostedLink") as Hosted:
            result = client.create_link_token("client-1")

        assert result.link_token == "link-sandbox-abc123"
        assert result.hosted_link_url == "https://hosted.plaid.com/link/abc"
        assert result.expiration == datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc)

        kwargs = Req.call_args.kwargs
        assert kwargs["client_name"] == "Practice Bank Sync"
        assert kwargs["webhook"] == "https://example.com/api/plaid/webhook"
        assert len(kwargs["products"]) == 1
        assert "access_token" not in kwargs
        assert "redirect_uri" not in kwargs
        Hosted.assert_called_once_with(url_lifetime_seconds=14400)

    def test_create_link_token_update_mode(self, client, mock_plaid_api):
        mock_plaid_api.link_token_create.return_value = _response({"link_token": "link-sandbox-upd"})

        with patch("integrations.plaid_client.LinkTokenCreateRequest") as Req, \
                patch("integrations.plaid_client.LinkTokenCreateHostedLink"), \
                patch("integrations.plaid_client.LinkTokenCreateRequestUpdate") as Update:
            client.create_link_token("client-1", access_token="access-1", account_selection_enabled=True)

        kwargs = Req.call_args.kwargs
        assert kwargs["access_token"] == "access-1"
        assert "products" not in kwargs
        Update.assert_called_once_with(account_selection_enabled=True)
        assert kwargs["update"] is Update.return_value

    def test_exchange_public_token(self, client, mock_plaid_api):
        mock_plaid_api.item_public_token_exchange.return_value = {
            "access_token": "access-sandbox-xyz",
            "item_id": "item-sandbox-xyz",
        }

        result = client.exchange_public_token("public-sandbox-test")

        assert result.access_token == "access-sandbox-xyz"
        assert result.item_id == "item-sandbox-xyz"
        request = mock_plaid_api.item_public_token_exchange.call_args[0][0]
        assert request.public_token == "public-sandbox-test"

    def test_remove_item(self, client, mock_plaid_api):
        client.remove_item("access-sandbox-xyz")

        mock_plaid_api.item_remove.assert_called_once()
        call_args = mock_plaid_api.item_remove.call_args[0][0]
        assert call_args.access_token == "access-sandbox-xyz"


# ---------------------------------------------------------------------------
# Tests: Item & accounts
# ---------------------------------------------------------------------------


class TestItemAndAccounts:
    def test_get_item_with_institution_lookup(self, client, mock_plaid_api):
        mock_plaid_api.item_get.return_value = _response({
            "item": {
                "item_id": "item-1",
                "institution_id": "ins_109508",
                "consent_expiration_time": "2025-01-01T00:00:00Z",
            },
        })
        mock_plaid_api.institutions_get_by_id.return_value = _response({
            "institution": {"name": "First Platypus Bank"},
        })

        item = client.get_item("access-1")

        assert item.item_id == "item-1"
        assert item.institution_id == "ins_109508"
        assert item.institution_name == "First Platypus Bank"
        assert item.consent_expiration_time == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_get_item_survives_institution_lookup_failure(self, client, mock_plaid_api):
        mock_plaid_api.item_get.return_value = _response({
            "item": {"item_id": "item-1", "institution_id": "ins_1"},
        })
        mock_plaid_api.institutions_get_by_id.side_effect = _api_exception(500, "{}")

        item = client.get_item("access-1")

        assert item.item_id == "item-1"
        assert item.institution_name is None

    def test_get_item_without_item_id(self, client, mock_plaid_api):
        mock_plaid_api.item_get.return_value = _response({"item": {}})
        with pytest.raises(ProviderDataError):
            client.get_item("access-1")

    def test_get_accounts(self, client, mock_plaid_api):
        mock_plaid_api.accounts_get.return_value = _response({
            "accounts": [
                {
                    "account_id": "acct-1",
                    "name": "Plaid Checking",
                    "official_name": "Plaid Gold Standard 0% Interest Checking",
                    "type": "depository",
                    "subtype": "checking",
                    "mask": "0000",
                    "balances": {"current": 110, "available": 100, "limit": None, "iso_currency_code": "USD"},
                },
                {"account_id": None, "name": "broken"},
            ],
        })

        accounts = client.get_accounts("access-1")

        assert len(accounts) == 1
        acct = accounts[0]
        assert acct.account_id == "acct-1"
        assert acct.type == "depository"
        assert acct.subtype == "checking"
        assert acct.current_balance == Decimal("110")
        assert acct.available_balance == Decimal("100")
        assert acct.credit_limit is None
        assert acct.iso_currency_code == "USD"


# ---------------------------------------------------------------------------
# Tests: Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    def test_sync_transactions_page(self, client, mock_plaid_api):
        mock_plaid_api.transactions_sync.return_value = _response({
            "added": [SAMPLE_TRANSACTION],
            "modified": [],
            "removed": [{"transaction_id": "txn-0", "account_id": "acct-1"}, {"transaction_id": None}],
            "has_more": True,
            "next_cursor": "cursor-2",
        })

        page = client.sync_transactions("access-1", "cursor-1")

        assert page.has_more is True
        assert page.next_cursor == "cursor-2"
        assert [t.transaction_id for t in page.added] == ["txn-1"]
        assert [r.transaction_id for r in page.removed] == ["txn-0"]
        request = mock_plaid_api.transactions_sync.call_args[0][0]
        assert request.cursor == "cursor-1"
        assert request.count == 500

    def test_initial_sync_sends_no_cursor(self, client, mock_plaid_api):
        mock_plaid_api.transactions_sync.return_value = _response({
            "added": [], "modified": [], "removed": [], "has_more": False, "next_cursor": "c1",
        })

        client.sync_transactions("access-1")

        request = mock_plaid_api.transactions_sync.call_args[0][0]
        assert "cursor" not in request.to_dict()

    def test_mutation_during_pagination(self, client, mock_plaid_api):
        mock_plaid_api.transactions_sync.side_effect = _api_exception(
            400, f'{{"error_code": "{MUTATION_DURING_PAGINATION}", "error_message": "retry"}}'
        )
        with pytest.raises(ProviderMutationDuringPaginationError) as exc_info:
            client.sync_transactions("access-1", "c1")
        assert exc_info.value.retriable is True

    def test_connection_failure(self, client, mock_plaid_api):
        mock_plaid_api.transactions_sync.side_effect = OSError("connection reset")
        with pytest.raises(ProviderConnectionError):
            client.sync_transactions("access-1")

    def test_refresh_transactions(self, client, mock_plaid_api):
        client.refresh_transactions("access-1")
        request = mock_plaid_api.transactions_refresh.call_args[0][0]
        assert request.access_token == "access-1"


class TestMapTransaction:
    def test_maps_all_fields(self):
        txn = _map_transaction(SAMPLE_TRANSACTION)

        assert txn.transaction_id == "txn-1"
        assert txn.account_id == "acct-1"
        assert txn.amount == Decimal("89.4")
        assert txn.transaction_date == date(2024, 3, 1)
        assert txn.transaction_datetime == datetime(2024, 3, 1, 11, 0, tzinfo=timezone.utc)
        assert txn.authorized_date == date(2024, 2, 29)
        assert txn.merchant_name == "SparkFun Electronics"
        assert txn.original_description == "SPARKFUN ELEC 8005551234"
        assert txn.payment_channel == "online"
        assert txn.pending is False
        assert txn.pending_transaction_id == "txn-0"
        assert txn.category_primary == "GENERAL_MERCHANDISE"
        assert txn.category_detailed == "GENERAL_MERCHANDISE_ELECTRONICS"
        assert txn.category_confidence == "VERY_HIGH"

    def test_missing_amount_rejected(self):
        with pytest.raises(ProviderDataError):
            _map_transaction(dict(SAMPLE_TRANSACTION, amount=None))

    def test_missing_category(self):
        txn = _map_transaction(dict(SAMPLE_TRANSACTION, personal_finance_category=None))
        assert txn.category_primary is None
        assert txn.category_confidence is None


class TestConversions:
    def test_to_decimal(self):
        assert _to_decimal(1.1) == Decimal("1.1")
        assert _to_decimal("abc") is None
        assert _to_decimal(None) is None

    def test_to_date(self):
        assert _to_date("2024-03-01") == date(2024, 3, 1)
        assert _to_date(date(2024, 3, 1)) == date(2024, 3, 1)
        assert _to_date(datetime(2024, 3, 1, 5)) == date(2024, 3, 1)
        assert _to_date("not a date") is None

    def test_to_datetime_assumes_utc(self):
        assert _to_datetime("2024-03-01T00:00:00") == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert _to_datetime(None) is None


# ---------------------------------------------------------------------------
# Tests: Sandbox
# ---------------------------------------------------------------------------


class TestSandboxWebhook:
    def test_fire_webhook(self, client, mock_plaid_api):
        with patch("integrations.plaid_client.SandboxItemFireWebhookRequest") as Req:
            client.fire_sandbox_webhook("access-1", "SYNC_UPDATES_AVAILABLE")

        Req.assert_called_once_with(access_token="access-1", webhook_code="SYNC_UPDATES_AVAILABLE")
        mock_plaid_api.sandbox_item_fire_webhook.assert_called_once_with(Req.return_value)

    def test_refused_outside_sandbox(self, mock_settings, mock_plaid_api):
        with patch("integrations.plaid_client.ApiClient"):
            client = PlaidClient(environment="production")
        with pytest.raises(ProviderAPIError, match="sandbox"):
            client.fire_sandbox_webhook("access-1", "SYNC_UPDATES_AVAILABLE")
        mock_plaid_api.sandbox_item_fire_webhook.assert_not_called()


# ---------------------------------------------------------------------------
# Tests: Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    def test_auth_error_401(self):
        exc = _api_exception(401, '{"error_code": "INVALID_ACCESS_TOKEN", "error_message": "invalid token"}')

        error = PlaidClient._map_plaid_error(exc, "item_get")

        assert isinstance(error, ProviderAuthError)
        assert error.error_code == "INVALID_ACCESS_TOKEN"
        assert "item_get" in str(error)
        assert "invalid token" in str(error)

    def test_item_login_required(self):
        exc = _api_exception(400, '{"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login needed"}')
        assert isinstance(PlaidClient._map_plaid_error(exc), ProviderAuthError)

    def test_rate_limit_429(self):
        error = PlaidClient._map_plaid_error(_api_exception(429, "{}"))
        assert isinstance(error, ProviderAPIError)
        assert error.retriable is True

    def test_server_error_500(self):
        error = PlaidClient._map_plaid_error(_api_exception(500, "{}"))
        assert error.status_code == 500
        assert error.retriable is True

    def test_bad_request_not_retriable(self):
        error = PlaidClient._map_plaid_error(
            _api_exception(400, '{"error_code": "INVALID_FIELD", "error_message": "bad"}')
        )
        assert isinstance(error, ProviderAPIError)
        assert not isinstance(error, ProviderAuthError)
        assert error.error_code == "INVALID_FIELD"
        assert error.retriable is False

    def test_unparseable_body(self):
        error = PlaidClient._map_plaid_error(_api_exception(502, "<html>bad gateway</html>"))
        assert isinstance(error, ProviderAPIError)
        assert error.error_code is None
