"""EncryptionKey model - AES-256 keys used to encrypt Plaid access tokens."""

from sqlalchemy import Boolean, Column, DateTime, Integer, LargeBinary, String

from database import Base
from models.utils import utc_now


class EncryptionKey(Base):
    """A named 256-bit data key.

    Ciphertexts reference keys by ``key_id`` so rotation can introduce a
    new key while old ciphertexts are re-encrypted.
    """

    __tablename__ = "encryption_keys"

    key_id = Column(Integer, primary_key=True, autoincrement=True)
    key_name = Column(String, unique=True, nullable=False)
    key_value = Column(LargeBinary, nullable=False)  # 32 raw bytes
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now)
