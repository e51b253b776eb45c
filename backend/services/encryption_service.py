"""AES-256-GCM encryption for Plaid access tokens.

Keys live in the ``encryption_keys`` table and are referenced by integer
``key_id`` from every ciphertext.  Stored ciphertext layout::

    nonce (16 bytes) || GCM ciphertext || GCM tag (16 bytes)

Loaded keys are held in a :class:`KeyCache`.  The cache is passed in by
the caller (one per process in the API layer, a fresh one per test) and
must be invalidated whenever keys change, which :meth:`rotate_key` does.
"""

import logging
import os
import threading
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy.orm import Session

from config import settings
from models.encryption_key import EncryptionKey
from models.item import Item

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16


class EncryptionError(Exception):
    """Base class for encryption gateway failures."""


class EncryptionKeyNotFoundError(EncryptionError):
    """No key with the requested id or name exists."""


class EncryptionKeyInactiveError(EncryptionError):
    """The requested key exists but has been deactivated."""


class DecryptionError(EncryptionError):
    """Ciphertext failed authentication (tampered, truncated, or wrong key)."""


@dataclass(frozen=True)
class EncryptedSecret:
    ciphertext: bytes
    key_id: int


@dataclass(frozen=True)
class CachedKey:
    key_id: int
    key_name: str
    key_value: bytes
    is_active: bool


class KeyCache:
    """Thread-safe read cache of encryption keys, indexed by id and name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: dict[int, CachedKey] = {}
        self._by_name: dict[str, CachedKey] = {}

    def get_by_id(self, key_id: int) -> CachedKey | None:
        with self._lock:
            return self._by_id.get(key_id)

    def get_by_name(self, key_name: str) -> CachedKey | None:
        with self._lock:
            return self._by_name.get(key_name)

    def put(self, key: CachedKey) -> None:
        with self._lock:
            self._by_id[key.key_id] = key
            self._by_name[key.key_name] = key

    def invalidate(self) -> None:
        """Drop every cached key."""
        with self._lock:
            self._by_id.clear()
            self._by_name.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)


class EncryptionService:
    """Encrypt and decrypt secrets with database-managed AES-256 keys.

    Args:
        key_cache: Shared key cache; a private one is created when omitted.
        key_name: Name of the key used for new encryptions
            (defaults to ``settings.ENCRYPTION_KEY_NAME``).
    """

    def __init__(self, key_cache: KeyCache | None = None, key_name: str | None = None):
        self.key_cache = key_cache if key_cache is not None else KeyCache()
        self.key_name = key_name or settings.ENCRYPTION_KEY_NAME

    # ------------------------------------------------------------------
    # Key lookup
    # ------------------------------------------------------------------

    @staticmethod
    def _to_cached(row: EncryptionKey) -> CachedKey:
        return CachedKey(
            key_id=row.key_id,
            key_name=row.key_name,
            key_value=bytes(row.key_value),
            is_active=bool(row.is_active),
        )

    def _key_by_name(self, db: Session, key_name: str) -> CachedKey:
        key = self.key_cache.get_by_name(key_name)
        if key is None:
            row = db.query(EncryptionKey).filter(EncryptionKey.key_name == key_name).first()
            if row is None:
                raise EncryptionKeyNotFoundError(f"Encryption key not found: {key_name}")
            key = self._to_cached(row)
            self.key_cache.put(key)
        if not key.is_active:
            raise EncryptionKeyInactiveError(f"Encryption key is inactive: {key_name}")
        return key

    def _key_by_id(self, db: Session, key_id: int) -> CachedKey:
        key = self.key_cache.get_by_id(key_id)
        if key is None:
            row = db.get(EncryptionKey, key_id)
            if row is None:
                raise EncryptionKeyNotFoundError(f"Encryption key not found: id={key_id}")
            key = self._to_cached(row)
            self.key_cache.put(key)
        if not key.is_active:
            raise EncryptionKeyInactiveError(f"Encryption key is inactive: id={key_id}")
        return key

    # ------------------------------------------------------------------
    # Encrypt / decrypt
    # ------------------------------------------------------------------

    def encrypt(self, db: Session, plaintext: str | bytes) -> EncryptedSecret:
        """Encrypt ``plaintext`` with the active key named ``self.key_name``."""
        key = self._key_by_name(db, self.key_name)
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key.key_value).encrypt(nonce, data, None)
        return EncryptedSecret(ciphertext=nonce + sealed, key_id=key.key_id)

    def decrypt_bytes(self, db: Session, ciphertext: bytes, key_id: int) -> bytes:
        """Decrypt a stored ciphertext, returning raw bytes.

        Raises:
            EncryptionKeyNotFoundError: ``key_id`` does not exist.
            EncryptionKeyInactiveError: the key was deactivated.
            DecryptionError: authentication failed or the blob is truncated.
        """
        key = self._key_by_id(db, key_id)
        blob = bytes(ciphertext)
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext is too short")
        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return AESGCM(key.key_value).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e

    def decrypt(self, db: Session, ciphertext: bytes, key_id: int) -> str:
        """Decrypt a stored ciphertext to a UTF-8 string."""
        data = self.decrypt_bytes(db, ciphertext, key_id)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted secret is not valid UTF-8") from e

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    @staticmethod
    def create_key(db: Session, key_name: str) -> EncryptionKey:
        """Insert a new random active key."""
        row = EncryptionKey(
            key_name=key_name,
            key_value=AESGCM.generate_key(bit_length=KEY_SIZE * 8),
            is_active=True,
        )
        db.add(row)
        db.flush()
        logger.info("Created encryption key %s (id=%d)", key_name, row.key_id)
        return row

    def ensure_key(self, db: Session) -> EncryptionKey:
        """Return the configured key, creating it on first use."""
        row = db.query(EncryptionKey).filter(EncryptionKey.key_name == self.key_name).first()
        if row is None:
            row = self.create_key(db, self.key_name)
        return row

    def rotate_key(self, db: Session, new_key_name: str) -> EncryptionKey:
        """Introduce ``new_key_name`` and retire the current key.

        Every Item credential sealed with the current key is re-encrypted
        under the new key before the old key is deactivated, then the key
        cache is invalidated.  The caller commits.
        """
        old = db.query(EncryptionKey).filter(EncryptionKey.key_name == self.key_name).first()
        if old is None:
            raise EncryptionKeyNotFoundError(f"Encryption key not found: {self.key_name}")

        new = self.create_key(db, new_key_name)
        items = (
            db.query(Item)
            .filter(Item.access_token_key_id == old.key_id, Item.access_token.isnot(None))
            .all()
        )
        for item in items:
            plaintext = self.decrypt_bytes(db, item.access_token, old.key_id)
            nonce = os.urandom(NONCE_SIZE)
            item.access_token = nonce + AESGCM(new.key_value).encrypt(nonce, plaintext, None)
            item.access_token_key_id = new.key_id

        old.is_active = False
        self.key_name = new_key_name
        db.flush()
        self.key_cache.invalidate()
        logger.info(
            "Rotated encryption key %s -> %s (%d credentials re-encrypted)",
            old.key_name, new_key_name, len(items),
        )
        return new
