"""Plaid credentials in the system keychain.

Settings read ``PLAID_CLIENT_ID`` and ``PLAID_SECRET`` from here before
falling back to the environment and ``.env`` (see ``config.py``). A host
without a usable keyring backend behaves as if nothing is stored.
"""

import logging

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

SERVICE_NAME = "finance-dashboard"

CREDENTIAL_KEYS: frozenset[str] = frozenset({"PLAID_CLIENT_ID", "PLAID_SECRET"})


def _check_key(key: str, action: str) -> bool:
    if key in CREDENTIAL_KEYS:
        return True
    logger.warning("Refusing to %s non-credential key %s", action, key)
    return False


def get_credential(key: str) -> str | None:
    """Return the stored value for ``key``, or None if absent or unreadable."""
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except KeyringError:
        logger.debug("Keychain lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store one of :data:`CREDENTIAL_KEYS`. Empty values are rejected."""
    if not _check_key(key, "store"):
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store an empty value for %s", key)
        return False
    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except KeyringError:
        logger.warning("Could not store %s in the keychain", key, exc_info=True)
        return False
    logger.info("Stored %s in the keychain", key)
    return True


def delete_credential(key: str) -> bool:
    """Remove a stored credential. Returns False if nothing was removed."""
    if not _check_key(key, "delete"):
        return False
    try:
        keyring.delete_password(SERVICE_NAME, key)
    except KeyringError:
        logger.debug("Could not delete %s from the keychain", key, exc_info=True)
        return False
    logger.info("Deleted %s from the keychain", key)
    return True


def list_credentials() -> dict[str, str]:
    """Stored Plaid credentials, keyed by name."""
    stored = {key: get_credential(key) for key in sorted(CREDENTIAL_KEYS)}
    return {key: value for key, value in stored.items() if value is not None}
