"""Unit tests for LinkReconcilerService (LINK/SESSION_FINISHED handling)."""

from decimal import Decimal

import pytest

from models import Account, Client, Item, LinkSession, LinkToken
from services.exceptions import ClientNotFoundError, LinkTokenNotFoundError
from services.link_reconciler_service import (
    MODE_DUPLICATE,
    MODE_NEW,
    MODE_RESTORE,
    MODE_UPDATE,
    LinkReconcilerService,
)
from services.webhook_classifier import classify_webhook
from tests.fixtures import create_account
from tests.fixtures.mocks import MockPlaidClient, make_provider_account


def session_payload(public_tokens, status="SUCCESS", link_token="link-sandbox-abc", error=None):
    payload = {
        "webhook_type": "LINK",
        "webhook_code": "SESSION_FINISHED",
        "status": status,
        "link_session_id": "sess-1",
        "link_token": link_token,
        "public_tokens": list(public_tokens),
    }
    if error:
        payload["error"] = error
    return payload


@pytest.fixture
def plaid():
    return MockPlaidClient()


@pytest.fixture
def reconciler(plaid, encryption):
    return LinkReconcilerService(provider=plaid, encryption=encryption)


def _handle(db, reconciler, payload):
    outcome = reconciler.handle_session_finished(db, classify_webhook(payload))
    db.commit()
    return outcome


# ---------------------------------------------------------------------------
# New connections
# ---------------------------------------------------------------------------


class TestNewLink:
    def test_creates_item_and_accounts(self, db, reconciler, plaid, encryption, practice_client, link_token):
        plaid.add_link(
            "public-1", "access-sandbox-1", "item-ext-1",
            accounts=[
                make_provider_account("acct-1", name="Checking", mask="0000"),
                make_provider_account("acct-2", name="Savings", subtype="savings", mask="1111"),
            ],
        )

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "processed"
        assert outcome.error_summary is None
        assert len(outcome.tokens) == 1
        token_outcome = outcome.tokens[0]
        assert token_outcome.mode == MODE_NEW
        assert token_outcome.accounts_created == 2

        item = db.query(Item).one()
        assert item.client_id == practice_client.id
        assert item.external_item_id == "item-ext-1"
        assert item.institution_id == "ins_109508"
        assert item.institution_name == "First Platypus Bank"
        assert item.status == "active"
        assert item.access_token != b"access-sandbox-1"
        assert encryption.decrypt(db, item.access_token, item.access_token_key_id) == "access-sandbox-1"

        accounts = db.query(Account).order_by(Account.external_account_id).all()
        assert [a.external_account_id for a in accounts] == ["acct-1", "acct-2"]
        assert all(a.item_id == item.id and a.is_active for a in accounts)

    def test_marks_token_used_and_records_session(self, db, reconciler, plaid, practice_client, link_token):
        plaid.add_link("public-1", "access-sandbox-1", "item-ext-1", accounts=[make_provider_account("acct-1")])

        _handle(db, reconciler, session_payload(["public-1"]))

        token = db.get(LinkToken, "link-sandbox-abc")
        assert token.status == "used"
        assert token.used_at is not None
        assert token.attempt_count == 1
        assert token.link_session_id == "sess-1"
        assert token.last_session_status == "SUCCESS"
        session = db.query(LinkSession).one()
        assert session.link_token == "link-sandbox-abc"
        assert session.status == "SUCCESS"

    def test_multiple_institutions_in_one_session(self, db, reconciler, plaid, practice_client, link_token):
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-1")])
        plaid.add_link(
            "public-2", "access-2", "item-ext-2",
            institution_id="ins_2", institution_name="Second Bank",
            accounts=[make_provider_account("acct-2")],
        )

        outcome = _handle(db, reconciler, session_payload(["public-1", "public-2"]))

        assert outcome.status == "processed"
        assert [t.mode for t in outcome.tokens] == [MODE_NEW, MODE_NEW]
        assert db.query(Item).count() == 2
        assert db.query(Account).count() == 2


# ---------------------------------------------------------------------------
# Existing Items
# ---------------------------------------------------------------------------


class TestExistingItems:
    def test_update_mode_reuses_item(self, db, reconciler, plaid, encryption, item, account, link_token):
        item.status = "login_required"
        item.last_error_code = "ITEM_LOGIN_REQUIRED"
        db.commit()
        plaid.add_link(
            "public-1", "access-sandbox-rotated", "item-ext-1",
            accounts=[make_provider_account("acct-ext-1", current_balance="250.00")],
        )

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].mode == MODE_UPDATE
        assert outcome.tokens[0].accounts_updated == 1
        assert db.query(Item).count() == 1
        item = db.get(Item, item.id)
        assert item.status == "active"
        assert item.last_error_code is None
        assert encryption.decrypt(db, item.access_token, item.access_token_key_id) == "access-sandbox-rotated"
        assert db.get(Account, account.id).current_balance == Decimal("250.00")
        # Same Plaid item: nothing to revoke
        assert plaid.removed_tokens == []

    def test_duplicate_institution_reuses_item_and_revokes_old_credential(
        self, db, reconciler, plaid, encryption, item, account, link_token
    ):
        item.transactions_cursor = "cursor-old"
        db.commit()
        plaid.add_link(
            "public-1", "access-sandbox-new", "item-ext-2",
            accounts=[make_provider_account("acct-ext-1")],
        )

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].mode == MODE_DUPLICATE
        assert db.query(Item).count() == 1
        item = db.get(Item, item.id)
        assert item.external_item_id == "item-ext-2"
        assert item.transactions_cursor is None
        assert encryption.decrypt(db, item.access_token, item.access_token_key_id) == "access-sandbox-new"
        assert plaid.removed_tokens == ["access-sandbox-existing"]

    def test_duplicate_survives_failed_revocation(self, db, encryption, item, account, link_token):
        plaid = MockPlaidClient(fail_remove=True)
        plaid.add_link("public-1", "access-sandbox-new", "item-ext-2", accounts=[make_provider_account("acct-ext-1")])
        reconciler = LinkReconcilerService(provider=plaid, encryption=encryption)

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "processed"
        assert outcome.tokens[0].mode == MODE_DUPLICATE
        assert db.get(Item, item.id).external_item_id == "item-ext-2"

    def test_duplicate_keeps_old_credential_when_accounts_fail(self, db, encryption, item, account, link_token):
        """The superseded credential is only revoked once the relink has gone through."""
        plaid = MockPlaidClient()
        plaid.add_link("public-1", "access-sandbox-new", "item-ext-2", accounts=[make_provider_account("acct-ext-1")])

        def broken_accounts(access_token):
            raise RuntimeError("accounts endpoint exploded")

        plaid.get_accounts = broken_accounts
        reconciler = LinkReconcilerService(provider=plaid, encryption=encryption)

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "failed"
        assert plaid.removed_tokens == []
        item = db.get(Item, item.id)
        assert item.external_item_id == "item-ext-1"
        assert encryption.decrypt(db, item.access_token, item.access_token_key_id) == "access-sandbox-existing"

    def test_duplicate_revokes_after_accounts(self, db, reconciler, plaid, item, account, link_token):
        plaid.add_link("public-1", "access-sandbox-new", "item-ext-2", accounts=[make_provider_account("acct-ext-1")])

        _handle(db, reconciler, session_payload(["public-1"]))

        names = [call[0] for call in plaid.calls]
        assert names.index("get_accounts") < names.index("remove_item")

    def test_restores_archived_item(self, db, reconciler, plaid, item, account, link_token):
        item.archive()
        account.is_active = False
        db.commit()
        plaid.add_link("public-1", "access-sandbox-new", "item-ext-9", accounts=[make_provider_account("acct-ext-1")])

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].mode == MODE_RESTORE
        assert db.query(Item).count() == 1
        item = db.get(Item, item.id)
        assert item.status == "active"
        assert item.is_archived is False
        assert item.archived_at is None
        assert item.external_item_id == "item-ext-9"
        assert db.get(Account, account.id).is_active is True

    def test_other_clients_items_are_not_matched(self, db, reconciler, plaid, item, link_token):
        """The same institution for a different client is a new Item."""
        other = Client(first_name="Grace", last_name="Hopper")
        db.add(other)
        db.flush()
        db.add(LinkToken(link_token="link-other", client_id=other.id, status="pending"))
        db.commit()
        plaid.add_link("public-1", "access-other", "item-ext-other", accounts=[make_provider_account("acct-other")])

        outcome = _handle(db, reconciler, session_payload(["public-1"], link_token="link-other"))

        assert outcome.tokens[0].mode == MODE_NEW
        assert db.query(Item).filter(Item.client_id == other.id).count() == 1
        assert db.get(Item, item.id).external_item_id == "item-ext-1"


# ---------------------------------------------------------------------------
# Account reconciliation
# ---------------------------------------------------------------------------


class TestAccountReconciliation:
    def test_relinked_account_keeps_row(self, db, reconciler, plaid, item, account, link_token):
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-ext-NEW")])

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].accounts_created == 0
        assert outcome.tokens[0].accounts_updated == 1
        assert db.query(Account).count() == 1
        assert db.get(Account, account.id).external_account_id == "acct-ext-NEW"

    def test_account_moving_between_items_is_logged(self, db, reconciler, plaid, item, account, link_token, caplog):
        plaid.add_link(
            "public-1", "access-2", "item-ext-2",
            institution_id="ins_other", institution_name="Other Bank",
            accounts=[make_provider_account("acct-ext-1")],
        )

        with caplog.at_level("WARNING", logger="services.link_reconciler_service"):
            outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].mode == MODE_NEW
        assert db.get(Account, account.id).item_id == outcome.tokens[0].item_id
        assert f"moved from item {item.id}" in caplog.text

    def test_relink_matches_null_mask(self, db, reconciler, plaid, item, link_token):
        original = create_account(db, item, external_account_id="acct-old", mask=None)
        db.commit()
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-new", mask=None)])

        _handle(db, reconciler, session_payload(["public-1"]))

        assert db.query(Account).count() == 1
        assert db.get(Account, original.id).external_account_id == "acct-new"

    def test_different_mask_creates_new_account(self, db, reconciler, plaid, item, account, link_token):
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-new", mask="9999")])

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].accounts_created == 1
        assert outcome.tokens[0].accounts_deactivated == 1
        assert db.get(Account, account.id).is_active is False

    def test_two_identical_accounts_are_not_merged(self, db, reconciler, plaid, item, account, link_token):
        plaid.add_link(
            "public-1", "access-1", "item-ext-1",
            accounts=[make_provider_account("acct-new-a"), make_provider_account("acct-new-b")],
        )

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].accounts_updated == 1
        assert outcome.tokens[0].accounts_created == 1
        assert db.query(Account).count() == 2

    def test_unreported_accounts_deactivated(self, db, reconciler, plaid, item, account, link_token):
        gone = create_account(db, item, external_account_id="acct-gone", account_subtype="savings", mask="5555")
        db.commit()
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-ext-1")])

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.tokens[0].accounts_deactivated == 1
        assert db.get(Account, gone.id).is_active is False
        assert db.get(Account, account.id).is_active is True


# ---------------------------------------------------------------------------
# Failures and non-success sessions
# ---------------------------------------------------------------------------


class TestSessionOutcomes:
    def test_partial_token_failure(self, db, reconciler, plaid, practice_client, link_token):
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-1")])

        outcome = _handle(db, reconciler, session_payload(["public-1", "public-bad"]))

        assert outcome.status == "processed"
        assert outcome.tokens[0].succeeded is True
        assert outcome.tokens[1].succeeded is False
        assert "token 1" in outcome.error_summary
        assert "INVALID_PUBLIC_TOKEN" in outcome.error_summary
        assert "1/2 connections processed" in outcome.message
        assert db.query(Item).count() == 1
        assert db.get(LinkToken, "link-sandbox-abc").status == "used"

    def test_failed_token_leaves_no_partial_rows(self, db, encryption, practice_client, link_token):
        """Work done for a token before it fails is rolled back."""
        plaid = MockPlaidClient()
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-1")])

        def broken_accounts(access_token):
            raise RuntimeError("accounts endpoint exploded")

        plaid.get_accounts = broken_accounts
        reconciler = LinkReconcilerService(provider=plaid, encryption=encryption)

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "failed"
        assert "accounts endpoint exploded" in outcome.error_summary
        assert db.query(Item).count() == 0
        # Session bookkeeping is kept; the token can be retried
        token = db.get(LinkToken, "link-sandbox-abc")
        assert token.status == "pending"
        assert token.attempt_count == 1
        assert db.query(LinkSession).count() == 1

    def test_used_token_is_duplicate(self, db, reconciler, plaid, practice_client, link_token):
        link_token.status = "used"
        db.commit()

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "duplicate"
        assert plaid.calls == []
        assert db.query(LinkSession).count() == 0

    def test_second_delivery_after_success_is_duplicate(self, db, reconciler, plaid, practice_client, link_token):
        plaid.add_link("public-1", "access-1", "item-ext-1", accounts=[make_provider_account("acct-1")])
        _handle(db, reconciler, session_payload(["public-1"]))

        outcome = _handle(db, reconciler, session_payload(["public-1"]))

        assert outcome.status == "duplicate"
        assert db.query(Item).count() == 1

    def test_non_success_status(self, db, reconciler, plaid, practice_client, link_token):
        error = {"error_type": "ITEM_ERROR", "error_code": "INVALID_CREDENTIALS", "error_message": "bad password"}

        outcome = _handle(db, reconciler, session_payload([], status="EXITED", error=error))

        assert outcome.status == "session_incomplete"
        assert "EXITED" in outcome.message
        assert plaid.calls == []
        token = db.get(LinkToken, "link-sandbox-abc")
        assert token.status == "pending"
        assert token.attempt_count == 1
        assert token.last_session_error_code == "INVALID_CREDENTIALS"
        session = db.query(LinkSession).one()
        assert session.error_type == "ITEM_ERROR"
        assert session.error_message == "bad password"

    def test_success_without_tokens(self, db, reconciler, practice_client, link_token):
        outcome = _handle(db, reconciler, session_payload([]))
        assert outcome.status == "no_tokens"
        assert db.get(LinkToken, "link-sandbox-abc").status == "pending"

    def test_unknown_link_token(self, db, reconciler, practice_client):
        with pytest.raises(LinkTokenNotFoundError):
            reconciler.handle_session_finished(db, classify_webhook(session_payload(["public-1"])))

    def test_missing_link_token(self, db, reconciler):
        payload = session_payload(["public-1"])
        del payload["link_token"]
        with pytest.raises(LinkTokenNotFoundError):
            reconciler.handle_session_finished(db, classify_webhook(payload))

    def test_token_for_missing_client(self, db, reconciler):
        db.add(LinkToken(link_token="link-orphan", client_id="no-such-client", status="pending"))
        db.commit()
        with pytest.raises(ClientNotFoundError):
            reconciler.handle_session_finished(
                db, classify_webhook(session_payload(["public-1"], link_token="link-orphan"))
            )
