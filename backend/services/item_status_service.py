"""Item status service - applies non-session webhooks to Items.

The state machine switches on :class:`WebhookCategory`; the raw Plaid
codes are resolved beforehand by :func:`classify_webhook`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import inspect, select, update
from sqlalchemy.orm import Session

from models.account import Account
from models.item import Item
from models.transaction import Transaction
from services.webhook_classifier import ClassifiedWebhook, WebhookCategory

logger = logging.getLogger(__name__)

ARCHIVE_REASON_ITEM_ARCHIVED = "item_archived"


@dataclass
class StatusUpdateResult:
    """What a status webhook changed (for logging and the event record)."""

    category: WebhookCategory
    item_id: str | None = None
    applied: bool = False
    new_status: str | None = None
    accounts_deactivated: int = 0
    transactions_archived: int = 0
    message: str = ""


class ItemStatusService:
    """Apply item-level status transitions."""

    def apply(self, db: Session, webhook: ClassifiedWebhook) -> StatusUpdateResult:
        """Apply one classified webhook.

        Unknown Items, missing item ids and unrecognized codes are logged
        no-ops; only the store itself can raise.
        """
        result = StatusUpdateResult(category=webhook.category)

        if webhook.category in (WebhookCategory.INFORMATIONAL, WebhookCategory.UNRECOGNIZED):
            level = logging.INFO if webhook.category == WebhookCategory.INFORMATIONAL else logging.WARNING
            logger.log(level, "No action for webhook %s/%s", webhook.webhook_type, webhook.webhook_code)
            result.message = f"no action for {webhook.webhook_type}/{webhook.webhook_code}"
            return result

        if not webhook.external_item_id:
            logger.warning("Webhook %s/%s has no item_id", webhook.webhook_type, webhook.webhook_code)
            result.message = "missing item_id"
            return result

        item = self._find_item(db, webhook.external_item_id)
        if item is None:
            logger.warning(
                "Webhook %s/%s for unknown item %s",
                webhook.webhook_type, webhook.webhook_code, webhook.external_item_id,
            )
            result.message = f"item not found: {webhook.external_item_id}"
            return result

        result.item_id = item.id
        now = datetime.now(timezone.utc)
        category = webhook.category

        # Archived Items only move again through a relink (restore).
        if item.is_archived and category != WebhookCategory.PERMISSION_REVOKED:
            logger.info(
                "Ignoring %s/%s for archived item %s",
                webhook.webhook_type, webhook.webhook_code, item.id,
            )
            result.new_status = item.status
            result.message = f"item {item.id} is archived; {category.value} ignored"
            return result

        if category == WebhookCategory.LOGIN_REQUIRED:
            item.status = "login_required"
            if webhook.error_code:
                item.last_error_code = webhook.error_code
                item.last_error_message = webhook.error_message
                item.last_error_at = now
            if webhook.consent_expires_at:
                item.consent_expires_at = webhook.consent_expires_at
        elif category == WebhookCategory.ITEM_ERROR:
            item.status = "error"
            item.last_error_code = webhook.error_code
            item.last_error_message = webhook.error_message
            item.last_error_at = now
        elif category == WebhookCategory.LOGIN_REPAIRED:
            item.status = "active"
            item.clear_error()
        elif category == WebhookCategory.PERMISSION_REVOKED:
            if not item.is_archived:
                item.archive()
            result.accounts_deactivated, result.transactions_archived = self.archive_cascade(db, item)
        elif category == WebhookCategory.ACCOUNT_REVOKED:
            result.accounts_deactivated = self._deactivate_account(db, item, webhook.external_account_id)
        elif category == WebhookCategory.NEW_ACCOUNTS_AVAILABLE:
            item.status = "needs_update"
        elif category == WebhookCategory.SYNC_UPDATES_AVAILABLE:
            item.has_sync_updates = True
        else:
            logger.warning("Status updater cannot handle category %s", category.value)
            result.message = f"unhandled category {category.value}"
            return result

        db.flush()
        result.applied = True
        result.new_status = item.status
        result.message = f"{category.value} applied to item {item.id}"
        logger.info(
            "Item %s: %s -> status=%s", item.id, category.value, item.status,
        )
        return result

    @staticmethod
    def _find_item(db: Session, external_item_id: str) -> Item | None:
        return (
            db.query(Item)
            .filter(Item.external_item_id == external_item_id)
            .order_by(Item.is_archived, Item.updated_at.desc())
            .first()
        )

    @staticmethod
    def _deactivate_account(db: Session, item: Item, external_account_id: str | None) -> int:
        if not external_account_id:
            logger.warning("Account revocation for item %s without account_id", item.id)
            return 0
        account = (
            db.query(Account)
            .filter(
                Account.item_id == item.id,
                Account.external_account_id == external_account_id,
            )
            .first()
        )
        if account is None:
            logger.warning("Revoked account %s not found under item %s", external_account_id, item.id)
            return 0
        account.is_active = False
        return 1

    @staticmethod
    def transaction_archival_available(db: Session) -> bool:
        """Whether the transaction store exists in the bound database."""
        return inspect(db.connection()).has_table(Transaction.__tablename__)

    def archive_cascade(self, db: Session, item: Item) -> tuple[int, int]:
        """Deactivate the Item's accounts and archive their transactions.

        Transactions are archived with one bulk UPDATE, skipped with a
        warning when the transactions table is not deployed.

        Returns:
            ``(accounts_deactivated, transactions_archived)``
        """
        accounts_deactivated = (
            db.query(Account)
            .filter(Account.item_id == item.id, Account.is_active.is_(True))
            .update({Account.is_active: False}, synchronize_session="fetch")
        )

        if not self.transaction_archival_available(db):
            logger.warning(
                "Transactions table not available; item %s archived without transaction cascade",
                item.id,
            )
            return accounts_deactivated, 0

        account_ids = select(Account.id).where(Account.item_id == item.id)
        result = db.execute(
            update(Transaction)
            .where(
                Transaction.account_id.in_(account_ids),
                Transaction.is_archived.is_(False),
            )
            .values(
                is_archived=True,
                archived_at=datetime.now(timezone.utc),
                archive_reason=ARCHIVE_REASON_ITEM_ARCHIVED,
            )
            .execution_options(synchronize_session="fetch")
        )
        transactions_archived = result.rowcount or 0
        logger.info(
            "Archived item %s: %d accounts deactivated, %d transactions archived",
            item.id, accounts_deactivated, transactions_archived,
        )
        return accounts_deactivated, transactions_archived
