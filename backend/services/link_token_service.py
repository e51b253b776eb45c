"""Link token service - starts a Plaid Link attempt for a client."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from integrations.provider_protocol import AggregationProvider
from models.client import Client
from models.item import Item
from models.link_token import LinkToken
from services.encryption_service import EncryptionService
from services.exceptions import ClientNotFoundError, ItemNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class CreatedLinkToken:
    link_token: str
    hosted_link_url: str | None
    expires_at: datetime | None
    client_name: str
    is_update_mode: bool


class LinkTokenService:
    """Create hosted Link sessions and remember them as pending LinkTokens."""

    def __init__(self, provider: AggregationProvider, encryption: EncryptionService):
        self.provider = provider
        self.encryption = encryption

    def create_link_token(
        self,
        db: Session,
        client_id: str,
        item_id: str | None = None,
        account_selection_enabled: bool = False,
    ) -> CreatedLinkToken:
        """Create a Link session for ``client_id``.

        With ``item_id`` the session opens in update mode for that Item,
        which must belong to the client (re-authentication, or account
        selection after NEW_ACCOUNTS_AVAILABLE).

        Raises:
            ClientNotFoundError, ItemNotFoundError
        """
        client = db.get(Client, client_id)
        if client is None:
            raise ClientNotFoundError(client_id)

        access_token = None
        if item_id:
            item = (
                db.query(Item)
                .filter(Item.id == item_id, Item.client_id == client.id)
                .first()
            )
            if item is None or item.access_token is None:
                raise ItemNotFoundError(item_id)
            access_token = self.encryption.decrypt(db, item.access_token, item.access_token_key_id)

        result = self.provider.create_link_token(
            client_user_id=client.id,
            access_token=access_token,
            account_selection_enabled=account_selection_enabled,
        )

        db.add(LinkToken(
            link_token=result.link_token,
            client_id=client.id,
            item_id=item_id,
            hosted_link_url=result.hosted_link_url,
            expires_at=result.expiration,
            status="pending",
        ))
        db.flush()

        logger.info(
            "Created %slink token for client %s",
            "update-mode " if item_id else "", client.id,
        )
        return CreatedLinkToken(
            link_token=result.link_token,
            hosted_link_url=result.hosted_link_url,
            expires_at=result.expiration,
            client_name=client.display_name,
            is_update_mode=item_id is not None,
        )
