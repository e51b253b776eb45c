"""Transaction sync service - cursor-based ledger sync against Plaid.

One call to :meth:`TransactionSyncService.sync_item` is one *sweep*: every
page from the Item's stored cursor to the end of the feed is fetched into
memory first, then applied to the ledger, and only then is the new cursor
committed.  A failed sweep rolls back and leaves the old cursor in place,
so the next attempt resumes from the same point.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderMutationDuringPaginationError
from integrations.provider_protocol import (
    AggregationProvider,
    ProviderTransaction,
    RemovedTransaction,
)
from models.account import Account
from models.item import Item
from models.transaction import Transaction
from services.encryption_service import EncryptionService
from services.exceptions import (
    ItemNotFoundError,
    ItemNotSyncableError,
    NoActiveAccountsError,
    SyncPaginationError,
)

logger = logging.getLogger(__name__)

TRANSFER_PRIMARY_CATEGORIES = frozenset({"TRANSFER_IN", "TRANSFER_OUT"})
TRANSFER_TRANSACTION_CODES = frozenset({"transfer", "ach", "wire"})

CONFIDENCE_SCORES: dict[str, Decimal] = {
    "VERY_HIGH": Decimal("0.99"),
    "HIGH": Decimal("0.92"),
    "MEDIUM": Decimal("0.70"),
    "LOW": Decimal("0.40"),
}

UNSYNCABLE_STATUSES = frozenset({"error", "login_required"})


def is_transfer(txn: ProviderTransaction) -> bool:
    """Whether a transaction moves money between the client's own accounts."""
    if txn.category_primary and txn.category_primary.upper() in TRANSFER_PRIMARY_CATEGORIES:
        return True
    if txn.transaction_code and txn.transaction_code.lower() in TRANSFER_TRANSACTION_CODES:
        return True
    if txn.category_detailed and "transfer" in txn.category_detailed.lower():
        return True
    return False


def confidence_score(level: str | None) -> Decimal | None:
    """Map Plaid's category confidence level to a numeric score (UNKNOWN -> None)."""
    if not level:
        return None
    return CONFIDENCE_SCORES.get(level.upper())


@dataclass
class SyncSweep:
    """All pages of one successful pagination, merged."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[RemovedTransaction] = field(default_factory=list)
    next_cursor: str | None = None
    pages: int = 0
    attempts: int = 1


@dataclass
class TransactionSyncResult:
    item_id: str
    external_item_id: str | None
    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0
    cursor: str | None = None
    is_initial_sync: bool = False


@dataclass
class BulkSyncItemResult:
    item_id: str
    success: bool
    result: TransactionSyncResult | None = None
    error: str | None = None


@dataclass
class BulkSyncResult:
    items: list[BulkSyncItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.items if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.items if not r.success)

    @property
    def total_added(self) -> int:
        return sum(r.result.added for r in self.items if r.result)

    @property
    def total_modified(self) -> int:
        return sum(r.result.modified for r in self.items if r.result)

    @property
    def total_removed(self) -> int:
        return sum(r.result.removed for r in self.items if r.result)


class TransactionSyncService:
    """Synchronize the local transaction ledger with Plaid."""

    def __init__(
        self,
        provider: AggregationProvider,
        encryption: EncryptionService,
        max_attempts: int | None = None,
    ):
        self.provider = provider
        self.encryption = encryption
        self.max_attempts = max_attempts or settings.TRANSACTION_SYNC_MAX_RETRIES

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def sync_item(self, db: Session, item_id: str) -> TransactionSyncResult:
        """Run one sweep for an Item and commit it.

        Raises:
            ItemNotFoundError: no Item with ``item_id``.
            ItemNotSyncableError: Item archived, in error, or needs login.
            NoActiveAccountsError: Item has no active accounts.
            SyncPaginationError: data kept changing during pagination.
            ProviderError, EncryptionError: propagated unchanged.
        """
        item = self._load_syncable_item(db, item_id)
        try:
            access_token = self.encryption.decrypt(db, item.access_token, item.access_token_key_id)
            account_map = self._account_map(db, item)

            start_cursor = item.transactions_cursor
            sweep = self._fetch_sweep(item, access_token, start_cursor)
            result = self._apply_sweep(db, item, sweep, account_map)

            now = datetime.now(timezone.utc)
            item.transactions_cursor = sweep.next_cursor
            item.cursor_updated_at = now
            item.last_successful_sync_at = now
            item.has_sync_updates = False
            db.commit()
        except Exception:
            db.rollback()
            raise

        result.cursor = sweep.next_cursor
        result.is_initial_sync = start_cursor is None
        logger.info(
            "Synced item %s (%s): +%d ~%d -%d, %d skipped, %d pages, %d attempt(s)%s",
            item.id, item.institution_name, result.added, result.modified, result.removed,
            result.skipped, sweep.pages, sweep.attempts,
            " [initial]" if result.is_initial_sync else "",
        )
        return result

    def _load_syncable_item(self, db: Session, item_id: str) -> Item:
        item = db.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        if item.is_archived:
            raise ItemNotSyncableError(item.id, "archived")
        if item.status in UNSYNCABLE_STATUSES:
            raise ItemNotSyncableError(item.id, item.status)
        if item.access_token is None or item.access_token_key_id is None:
            raise ItemNotSyncableError(item.id, "missing credential")
        return item

    @staticmethod
    def _account_map(db: Session, item: Item) -> dict[str, str]:
        """external_account_id -> Account.id for the Item's active accounts."""
        rows = (
            db.query(Account.external_account_id, Account.id)
            .filter(Account.item_id == item.id, Account.is_active.is_(True))
            .all()
        )
        if not rows:
            raise NoActiveAccountsError(item.id)
        return {external_id: account_id for external_id, account_id in rows}

    def _fetch_sweep(self, item: Item, access_token: str, start_cursor: str | None) -> SyncSweep:
        """Page through the feed, restarting from ``start_cursor`` on mutation errors."""
        for attempt in range(1, self.max_attempts + 1):
            sweep = SyncSweep(attempts=attempt)
            cursor = start_cursor
            try:
                while True:
                    page = self.provider.sync_transactions(access_token, cursor)
                    sweep.pages += 1
                    sweep.added.extend(page.added)
                    sweep.modified.extend(page.modified)
                    sweep.removed.extend(page.removed)
                    cursor = page.next_cursor
                    if not page.has_more:
                        break
            except ProviderMutationDuringPaginationError:
                logger.warning(
                    "Transactions changed during pagination for item %s (attempt %d/%d); "
                    "restarting from the sweep's starting cursor",
                    item.id, attempt, self.max_attempts,
                )
                continue
            sweep.next_cursor = cursor or start_cursor
            return sweep
        raise SyncPaginationError(item.id, self.max_attempts)

    # ------------------------------------------------------------------
    # Applying a sweep
    # ------------------------------------------------------------------

    def _apply_sweep(
        self,
        db: Session,
        item: Item,
        sweep: SyncSweep,
        account_map: dict[str, str],
    ) -> TransactionSyncResult:
        result = TransactionSyncResult(item_id=item.id, external_item_id=item.external_item_id)
        removed_ids = {r.transaction_id for r in sweep.removed}

        # Posted transactions that replace a pending one removed in the same sweep.
        replacements: dict[str, ProviderTransaction] = {
            txn.pending_transaction_id: txn
            for txn in sweep.added
            if txn.pending_transaction_id and txn.pending_transaction_id in removed_ids
        }
        consumed: set[str] = set()

        for txn in sweep.added:
            account_id = account_map.get(txn.account_id)
            if account_id is None:
                self._warn_unmapped(item, txn)
                result.skipped += 1
                continue

            predecessor = txn.pending_transaction_id
            if predecessor and replacements.get(predecessor) is txn:
                consumed.add(predecessor)
                row = self._find(db, predecessor)
                if row is not None:
                    self._apply_fields(row, txn, account_id, "modified")
                    logger.debug("Pending %s posted as %s (row %s)", predecessor, txn.transaction_id, row.id)
                    result.modified += 1
                    db.flush()
                    continue
                logger.info(
                    "Pending transaction %s was never stored; inserting posted %s",
                    predecessor, txn.transaction_id,
                )

            if self._upsert(db, txn, account_id, "added"):
                result.added += 1
            else:
                result.modified += 1

        for txn in sweep.modified:
            account_id = account_map.get(txn.account_id)
            if account_id is None:
                self._warn_unmapped(item, txn)
                result.skipped += 1
                continue
            self._upsert(db, txn, account_id, "modified")
            result.modified += 1

        for removed in sweep.removed:
            if removed.transaction_id in consumed:
                continue
            row = self._find(db, removed.transaction_id)
            if row is None:
                logger.warning(
                    "Removed transaction %s for item %s was never synced", removed.transaction_id, item.id,
                )
                continue
            row.is_removed = True
            row.transaction_status = "removed"
            if row.processed_into_ledger:
                row.updated_since_process = True
            result.removed += 1

        db.flush()
        return result

    @staticmethod
    def _find(db: Session, external_transaction_id: str) -> Transaction | None:
        return (
            db.query(Transaction)
            .filter(Transaction.external_transaction_id == external_transaction_id)
            .first()
        )

    def _upsert(self, db: Session, txn: ProviderTransaction, account_id: str, status: str) -> bool:
        """Insert or update by external id.  Returns True when a row was inserted."""
        row = self._find(db, txn.transaction_id)
        inserted = row is None
        if inserted:
            row = Transaction(external_transaction_id=txn.transaction_id)
            db.add(row)
        self._apply_fields(row, txn, account_id, status)
        db.flush()
        return inserted

    @staticmethod
    def _apply_fields(row: Transaction, txn: ProviderTransaction, account_id: str, status: str) -> None:
        if row.processed_into_ledger:
            row.updated_since_process = True
        row.account_id = account_id
        row.external_transaction_id = txn.transaction_id
        row.pending_external_transaction_id = txn.pending_transaction_id
        row.transaction_date = txn.transaction_date
        row.transaction_datetime = txn.transaction_datetime
        row.authorized_date = txn.authorized_date
        row.posted_date = None if txn.pending else txn.transaction_date
        row.merchant_name = txn.merchant_name
        row.original_description = txn.original_description or txn.name
        row.merchant_logo_url = txn.logo_url
        row.merchant_website = txn.website
        row.amount = txn.amount
        row.iso_currency_code = txn.iso_currency_code
        row.payment_channel = txn.payment_channel
        row.transaction_code = txn.transaction_code
        row.pending = txn.pending
        row.is_transfer = is_transfer(txn)
        row.is_removed = False
        row.primary_category = txn.category_primary
        row.detailed_category = txn.category_detailed
        row.confidence_score = confidence_score(txn.category_confidence)
        row.transaction_status = status
        # Reported live again by Plaid (e.g. after an archived Item is restored).
        row.is_archived = False
        row.archived_at = None
        row.archive_reason = None

    @staticmethod
    def _warn_unmapped(item: Item, txn: ProviderTransaction) -> None:
        logger.warning(
            "Skipping transaction %s for item %s: unknown or inactive account %s",
            txn.transaction_id, item.id, txn.account_id,
        )

    # ------------------------------------------------------------------
    # Bulk & refresh
    # ------------------------------------------------------------------

    @staticmethod
    def items_with_pending_updates(
        db: Session,
        client_id: str | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        """Active, non-archived Items flagged by SYNC_UPDATES_AVAILABLE, oldest first."""
        query = db.query(Item).filter(
            Item.has_sync_updates.is_(True),
            Item.status == "active",
            Item.is_archived.is_(False),
        )
        if client_id:
            query = query.filter(Item.client_id == client_id)
        query = query.order_by(Item.updated_at.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def sync_pending_items(
        self,
        db: Session,
        client_id: str | None = None,
        limit: int | None = None,
    ) -> BulkSyncResult:
        """Sync every flagged Item; one Item's failure does not stop the rest."""
        limit = limit or settings.TRANSACTION_SYNC_BULK_LIMIT
        item_ids = [item.id for item in self.items_with_pending_updates(db, client_id, limit)]
        bulk = BulkSyncResult()
        for item_id in item_ids:
            try:
                result = self.sync_item(db, item_id)
                bulk.items.append(BulkSyncItemResult(item_id=item_id, success=True, result=result))
            except Exception as e:
                logger.warning("Bulk sync failed for item %s: %s", item_id, e)
                bulk.items.append(BulkSyncItemResult(item_id=item_id, success=False, error=str(e)))
        logger.info(
            "Bulk sync: %d items, %d succeeded, %d failed (+%d ~%d -%d)",
            len(item_ids), bulk.succeeded, bulk.failed,
            bulk.total_added, bulk.total_modified, bulk.total_removed,
        )
        return bulk

    def refresh_transactions(self, db: Session, item_id: str) -> Item:
        """Ask Plaid to pull fresh transactions for an Item.

        New data is announced later by a SYNC_UPDATES_AVAILABLE webhook.
        """
        item = self._load_syncable_item(db, item_id)
        access_token = self.encryption.decrypt(db, item.access_token, item.access_token_key_id)
        self.provider.refresh_transactions(access_token)
        logger.info("Requested transaction refresh for item %s", item.id)
        return item
