#!/usr/bin/env python3
"""Rotate the key that encrypts stored Plaid access tokens.

Creates ``NEW_KEY_NAME``, re-encrypts every Item credential sealed with the
current key (``ENCRYPTION_KEY_NAME``) and deactivates the old key, all in
one transaction.  Set ``ENCRYPTION_KEY_NAME`` to the new name afterwards.

Usage:
    python -m scripts.rotate_encryption_key plaid_access_token_v2
    python -m scripts.rotate_encryption_key plaid_access_token_v2 --dry-run
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from database import get_session_local
from logging_config import setup_logging
from models import EncryptionKey
from services.encryption_service import EncryptionError, EncryptionService

logger = logging.getLogger(__name__)


def rotate(db, new_key_name: str, *, dry_run: bool = False) -> EncryptionKey:
    """Rotate inside ``db``; commits unless ``dry_run``."""
    if db.query(EncryptionKey).filter(EncryptionKey.key_name == new_key_name).first():
        raise ValueError(f"Encryption key {new_key_name!r} already exists")

    service = EncryptionService(key_name=settings.ENCRYPTION_KEY_NAME)
    try:
        new_key = service.rotate_key(db, new_key_name)
    except Exception:
        db.rollback()
        raise

    if dry_run:
        db.rollback()
        logger.info("Dry run: rotation to %s rolled back", new_key_name)
    else:
        db.commit()
    return new_key


def main():
    parser = argparse.ArgumentParser(description="Rotate the access-token encryption key")
    parser.add_argument("new_key_name", help="Name of the key to create")
    parser.add_argument("--dry-run", action="store_true", help="Re-encrypt, then roll back")
    args = parser.parse_args()

    setup_logging()
    db = get_session_local()()
    try:
        rotate(db, args.new_key_name, dry_run=args.dry_run)
    except (EncryptionError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()

    if not args.dry_run:
        print(f"Rotated. Set ENCRYPTION_KEY_NAME={args.new_key_name} before restarting the API.")


if __name__ == "__main__":
    main()
