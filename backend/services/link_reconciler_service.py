"""Link reconciler - turns a finished Plaid Link session into Items and Accounts.

Handles ``LINK/SESSION_FINISHED`` webhooks.  For every public token the
session produced it exchanges the token, decides whether the connection
is an update of a known Item, a duplicate of a live Item at the same
institution, a restore of an archived one, or brand new, and then
reconciles the Item's accounts against Plaid's current account list.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.provider_protocol import (
    AggregationProvider,
    ExchangeResult,
    ProviderAccount,
    ProviderItem,
)
from models.account import Account
from models.client import Client
from models.item import Item
from models.link_token import LinkSession, LinkToken
from services.encryption_service import EncryptedSecret, EncryptionError, EncryptionService
from services.exceptions import ClientNotFoundError, LinkTokenNotFoundError
from services.webhook_classifier import ClassifiedWebhook

logger = logging.getLogger(__name__)

SESSION_SUCCESS = "SUCCESS"

MODE_UPDATE = "update"
MODE_DUPLICATE = "duplicate"
MODE_RESTORE = "restore"
MODE_NEW = "new"


@dataclass
class TokenOutcome:
    """Result of processing one public token from a session."""

    index: int
    mode: str | None = None
    item_id: str | None = None
    external_item_id: str | None = None
    institution_name: str | None = None
    accounts_created: int = 0
    accounts_updated: int = 0
    accounts_deactivated: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class LinkSessionOutcome:
    """Result of one session-finished webhook."""

    link_token: str
    status: str  # "processed" | "duplicate" | "session_incomplete" | "no_tokens" | "failed"
    session_status: str | None = None
    tokens: list[TokenOutcome] = field(default_factory=list)

    @property
    def failed_tokens(self) -> list[TokenOutcome]:
        return [t for t in self.tokens if not t.succeeded]

    @property
    def error_summary(self) -> str | None:
        failed = self.failed_tokens
        if not failed:
            return None
        return "; ".join(f"token {t.index}: {t.error}" for t in failed)

    @property
    def message(self) -> str:
        if self.status == "duplicate":
            return f"link token {self.link_token} already used"
        if self.status == "session_incomplete":
            return f"link session ended with status {self.session_status}"
        if self.status == "no_tokens":
            return "link session produced no public tokens"
        ok = len(self.tokens) - len(self.failed_tokens)
        summary = f"{ok}/{len(self.tokens)} connections processed"
        errors = self.error_summary
        return f"{summary} ({errors})" if errors else summary


class LinkReconcilerService:
    """Reconcile successful Link sessions into local Items and Accounts."""

    def __init__(self, provider: AggregationProvider, encryption: EncryptionService):
        self.provider = provider
        self.encryption = encryption

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle_session_finished(self, db: Session, webhook: ClassifiedWebhook) -> LinkSessionOutcome:
        """Process a ``SESSION_FINISHED`` webhook.

        Raises:
            LinkTokenNotFoundError: the webhook names no known link token.
            ClientNotFoundError: the token's client no longer exists.
        """
        if not webhook.link_token:
            raise LinkTokenNotFoundError(None)
        token = db.get(LinkToken, webhook.link_token)
        if token is None:
            raise LinkTokenNotFoundError(webhook.link_token)

        if token.status == "used":
            logger.info("Link token %s already used; skipping session", token.link_token)
            return LinkSessionOutcome(
                link_token=token.link_token,
                status="duplicate",
                session_status=webhook.session_status,
            )

        client = db.get(Client, token.client_id)
        if client is None:
            raise ClientNotFoundError(token.client_id)

        self._record_session(db, token, webhook)

        session_status = (webhook.session_status or "").upper()
        if session_status != SESSION_SUCCESS:
            logger.info(
                "Link session %s for client %s ended with %s (%s)",
                webhook.link_session_id, client.id, session_status or "no status",
                webhook.error_code or "no error",
            )
            return LinkSessionOutcome(
                link_token=token.link_token,
                status="session_incomplete",
                session_status=webhook.session_status,
            )

        if not webhook.public_tokens:
            logger.warning("Successful link session %s carried no public tokens", webhook.link_session_id)
            return LinkSessionOutcome(
                link_token=token.link_token,
                status="no_tokens",
                session_status=webhook.session_status,
            )

        outcomes: list[TokenOutcome] = []
        for index, public_token in enumerate(webhook.public_tokens):
            try:
                with db.begin_nested():
                    outcome = self._process_token(db, client, index, public_token)
            except Exception as e:
                logger.exception("Failed to process public token %d for client %s", index, client.id)
                outcome = TokenOutcome(index=index, error=str(e) or e.__class__.__name__)
            outcomes.append(outcome)

        succeeded = [o for o in outcomes if o.succeeded]
        if succeeded:
            token.status = "used"
            token.used_at = datetime.now(timezone.utc)
        db.flush()

        outcome = LinkSessionOutcome(
            link_token=token.link_token,
            status="processed" if succeeded else "failed",
            session_status=webhook.session_status,
            tokens=outcomes,
        )
        logger.info("Link session %s for client %s: %s", webhook.link_session_id, client.id, outcome.message)
        return outcome

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _record_session(db: Session, token: LinkToken, webhook: ClassifiedWebhook) -> None:
        error = webhook.session_error or {}
        db.add(LinkSession(
            link_token=token.link_token,
            link_session_id=webhook.link_session_id,
            status=webhook.session_status,
            error_type=error.get("error_type"),
            error_code=error.get("error_code"),
            error_message=error.get("error_message"),
        ))
        token.link_session_id = webhook.link_session_id
        token.last_session_status = webhook.session_status
        token.last_session_error_code = error.get("error_code")
        token.last_session_error_message = error.get("error_message")
        token.attempt_count = (token.attempt_count or 0) + 1
        db.flush()

    # ------------------------------------------------------------------
    # Per-token pipeline
    # ------------------------------------------------------------------

    def _process_token(self, db: Session, client: Client, index: int, public_token: str) -> TokenOutcome:
        exchange = self.provider.exchange_public_token(public_token)
        metadata = self.provider.get_item(exchange.access_token)
        secret = self.encryption.encrypt(db, exchange.access_token)

        item, mode, superseded = self._resolve_item(db, client, exchange, metadata, secret)

        provider_accounts = self.provider.get_accounts(exchange.access_token)
        created, updated, deactivated = self._reconcile_accounts(db, item, provider_accounts)

        # Only revoke once the new credential is in place.
        if superseded is not None:
            self._revoke_credential(db, item.id, superseded)

        logger.info(
            "Link %s: item %s (%s) for client %s, accounts +%d ~%d -%d",
            mode, item.id, item.institution_name, client.id, created, updated, deactivated,
        )
        return TokenOutcome(
            index=index,
            mode=mode,
            item_id=item.id,
            external_item_id=item.external_item_id,
            institution_name=item.institution_name,
            accounts_created=created,
            accounts_updated=updated,
            accounts_deactivated=deactivated,
        )

    def _resolve_item(
        self,
        db: Session,
        client: Client,
        exchange: ExchangeResult,
        metadata: ProviderItem,
        secret: EncryptedSecret,
    ) -> tuple[Item, str, EncryptedSecret | None]:
        """Pick the Item this connection belongs to, in priority order.

        1. an Item with the same external item id (update)
        2. a live Item for the same client and institution (duplicate)
        3. an archived Item for the same client and institution (restore)
        4. otherwise a new Item

        In duplicate mode the Item's previous credential is returned so the
        caller can revoke it after the rest of the token has succeeded.
        """
        superseded = None
        item = (
            db.query(Item)
            .filter(Item.external_item_id == exchange.item_id)
            .order_by(Item.is_archived, Item.updated_at.desc())
            .first()
        )
        if item is not None:
            mode = MODE_UPDATE
            if item.is_archived:
                item.restore()
        else:
            live = archived = None
            if metadata.institution_id:
                live = (
                    db.query(Item)
                    .filter(
                        Item.client_id == client.id,
                        Item.institution_id == metadata.institution_id,
                        Item.is_archived.is_(False),
                    )
                    .first()
                )
                if live is None:
                    archived = (
                        db.query(Item)
                        .filter(
                            Item.client_id == client.id,
                            Item.institution_id == metadata.institution_id,
                            Item.is_archived.is_(True),
                        )
                        .order_by(Item.updated_at.desc())
                        .first()
                    )

            if live is not None:
                mode = MODE_DUPLICATE
                item = live
                if item.access_token is not None and item.access_token_key_id is not None:
                    superseded = EncryptedSecret(ciphertext=item.access_token, key_id=item.access_token_key_id)
            elif archived is not None:
                mode = MODE_RESTORE
                item = archived
                item.restore()
            else:
                mode = MODE_NEW
                item = Item(client_id=client.id, institution_id=metadata.institution_id)
                db.add(item)

        if item.external_item_id != exchange.item_id:
            # The cursor belongs to the old Plaid item; start the new one from scratch.
            item.transactions_cursor = None
            item.cursor_updated_at = None
        item.external_item_id = exchange.item_id
        item.access_token = secret.ciphertext
        item.access_token_key_id = secret.key_id
        item.institution_id = metadata.institution_id or item.institution_id
        item.institution_name = metadata.institution_name or item.institution_name
        item.consent_expires_at = metadata.consent_expiration_time
        item.status = "active"
        item.clear_error()
        db.flush()
        return item, mode, superseded

    def _revoke_credential(self, db: Session, item_id: str, secret: EncryptedSecret) -> None:
        """Best-effort revoke of a superseded credential at Plaid."""
        try:
            access_token = self.encryption.decrypt(db, secret.ciphertext, secret.key_id)
            self.provider.remove_item(access_token)
            logger.info("Revoked superseded credential for item %s", item_id)
        except (ProviderError, EncryptionError) as e:
            logger.warning("Failed to revoke old credential for item %s (continuing): %s", item_id, e)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _reconcile_accounts(
        self,
        db: Session,
        item: Item,
        provider_accounts: list[ProviderAccount],
    ) -> tuple[int, int, int]:
        """Upsert Plaid's accounts onto the Item and deactivate the rest.

        Returns:
            ``(created, updated, deactivated)`` counts.
        """
        now = datetime.now(timezone.utc)
        touched: set[str] = set()
        created = updated = 0

        for pa in provider_accounts:
            account = (
                db.query(Account)
                .filter(Account.external_account_id == pa.account_id)
                .first()
            )
            if account is None:
                account = self._find_relinked_account(db, item, pa, touched)
                if account is not None:
                    logger.info(
                        "Re-linked account %s: %s -> %s",
                        account.id, account.external_account_id, pa.account_id,
                    )
                    account.external_account_id = pa.account_id
            if account is None:
                account = Account(item_id=item.id, external_account_id=pa.account_id)
                db.add(account)
                created += 1
            else:
                updated += 1
                if account.item_id != item.id:
                    logger.warning(
                        "Account %s (%s) moved from item %s to item %s",
                        account.id, pa.account_id, account.item_id, item.id,
                    )

            account.item_id = item.id
            account.name = pa.name
            account.official_name = pa.official_name
            account.account_type = pa.type
            account.account_subtype = pa.subtype
            account.mask = pa.mask
            account.current_balance = pa.current_balance
            account.available_balance = pa.available_balance
            account.credit_limit = pa.credit_limit
            account.iso_currency_code = pa.iso_currency_code
            account.is_active = True
            account.last_updated_at = now
            db.flush()
            touched.add(account.id)

        stale = (
            db.query(Account)
            .filter(Account.item_id == item.id, Account.is_active.is_(True))
            .all()
        )
        deactivated = 0
        for account in stale:
            if account.id not in touched:
                account.is_active = False
                deactivated += 1
        if deactivated:
            logger.info("Deactivated %d accounts no longer reported for item %s", deactivated, item.id)
        db.flush()
        return created, updated, deactivated

    @staticmethod
    def _find_relinked_account(
        db: Session,
        item: Item,
        pa: ProviderAccount,
        exclude_ids: set[str],
    ) -> Account | None:
        """Match a previously known account by (item, type, subtype, mask)."""
        query = db.query(Account).filter(Account.item_id == item.id)
        for column, value in (
            (Account.account_type, pa.type),
            (Account.account_subtype, pa.subtype),
            (Account.mask, pa.mask),
        ):
            query = query.filter(column.is_(None) if value is None else column == value)
        if exclude_ids:
            query = query.filter(Account.id.notin_(exclude_ids))
        return query.order_by(Account.is_active.desc(), Account.updated_at.desc()).first()
