"""SQLAlchemy ORM models."""

from .account import Account
from .client import Client
from .encryption_key import EncryptionKey
from .item import Item
from .link_token import LinkSession, LinkToken
from .transaction import Transaction
from .utils import generate_uuid
from .webhook_event import WebhookEvent

__all__ = ["Account", "Client", "EncryptionKey", "Item", "LinkSession", "LinkToken", "Transaction", "WebhookEvent", "generate_uuid"]
