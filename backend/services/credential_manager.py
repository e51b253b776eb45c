"""Plaid API credentials in the system keychain.

The Plaid client id and secret are kept out of ``.env`` by storing them
under the ``practice-bank-sync`` keyring service.  Settings read them
through :class:`config.KeychainSettingsSource`; the setup and migration
scripts write them.  A keychain that is locked or missing counts as
"nothing stored", so environment variables still work.
"""

import logging

import keyring

logger = logging.getLogger(__name__)

SERVICE_NAME = "practice-bank-sync"

CREDENTIAL_KEYS: frozenset[str] = frozenset({"PLAID_CLIENT_ID", "PLAID_SECRET"})


def _is_credential_key(key: str, action: str) -> bool:
    if key in CREDENTIAL_KEYS:
        return True
    logger.warning("Refusing to %s %s: not a Plaid credential", action, key)
    return False


def get_credential(key: str) -> str | None:
    """Look up one Plaid credential (``PLAID_CLIENT_ID`` or ``PLAID_SECRET``).

    Returns ``None`` when nothing is stored or the keychain can't be read.
    """
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Save a Plaid credential; returns whether the keychain accepted it."""
    if not _is_credential_key(key, "store"):
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store an empty %s", key)
        return False

    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain rejected %s", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    if not _is_credential_key(key, "delete"):
        return False

    try:
        keyring.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Nothing to delete for %s", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True


def list_credentials() -> dict[str, str]:
    """Plaid credentials currently in the keychain, by name."""
    stored = {key: get_credential(key) for key in sorted(CREDENTIAL_KEYS)}
    return {key: value for key, value in stored.items() if value is not None}


def missing_credentials() -> list[str]:
    """Names of Plaid credentials the keychain does not hold yet."""
    return sorted(CREDENTIAL_KEYS - list_credentials().keys())
