"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from models import Account, Client, Item, LinkToken, Transaction
from services.encryption_service import EncryptionService, KeyCache
from sqlalchemy.orm import Session


def create_item(
    db: Session,
    client: Client,
    encryption: EncryptionService,
    access_token: str = "access-sandbox-existing",
    **overrides,
) -> Item:
    """Create an active Item with an encrypted credential.

    This is a helper function (not a fixture) for tests that need several
    Items; keyword overrides are applied to the model as-is.
    """
    secret = encryption.encrypt(db, access_token)
    fields = {
        "client_id": client.id,
        "external_item_id": "item-ext-1",
        "institution_id": "ins_109508",
        "institution_name": "First Platypus Bank",
        "access_token": secret.ciphertext,
        "access_token_key_id": secret.key_id,
        "status": "active",
    }
    fields.update(overrides)
    item = Item(**fields)
    db.add(item)
    db.flush()
    return item


def create_account(db: Session, item: Item, **overrides) -> Account:
    fields = {
        "item_id": item.id,
        "external_account_id": "acct-ext-1",
        "name": "Plaid Checking",
        "account_type": "depository",
        "account_subtype": "checking",
        "mask": "0000",
        "current_balance": Decimal("110.00"),
        "is_active": True,
    }
    fields.update(overrides)
    account = Account(**fields)
    db.add(account)
    db.flush()
    return account


def create_transaction(db: Session, account: Account, **overrides) -> Transaction:
    fields = {
        "account_id": account.id,
        "external_transaction_id": "txn-ext-1",
        "transaction_date": date(2024, 3, 1),
        "amount": Decimal("12.34"),
        "merchant_name": "Tectra Inc",
        "pending": False,
        "transaction_status": "added",
    }
    fields.update(overrides)
    txn = Transaction(**fields)
    db.add(txn)
    db.flush()
    return txn


@pytest.fixture
def key_cache():
    """A private key cache so tests never share loaded keys."""
    return KeyCache()


@pytest.fixture
def encryption(db, key_cache):
    """Encryption service with its configured key already created."""
    service = EncryptionService(key_cache=key_cache)
    service.ensure_key(db)
    db.commit()
    return service


@pytest.fixture
def practice_client(db):
    """Create a practice client."""
    client = Client(first_name="Ada", last_name="Lovelace", email="ada@example.com")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture
def item(db, practice_client, encryption):
    """Create an active Item with one encrypted credential."""
    item = create_item(db, practice_client, encryption)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture
def account(db, item):
    """Create an active checking account under the Item."""
    account = create_account(db, item)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def link_token(db, practice_client):
    """Create a pending link token for the practice client."""
    token = LinkToken(
        link_token="link-sandbox-abc",
        client_id=practice_client.id,
        status="pending",
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token
