"""OS credential store access.

The session store talks to a ``KeychainStore``. Production code uses the
``keyring`` library, which maps to Keychain on macOS, Credential Vault on
Windows and Secret Service on Linux.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import keyring
import keyring.errors
from keyring.backends import fail

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind

logger = logging.getLogger(__name__)


class KeychainStore(Protocol):
    """Get, set and delete one secret by (service, account)."""

    async def get(self, service: str, account: str) -> str | None:
        """Return the stored secret, or None if there is none."""
        ...

    async def set(self, service: str, account: str, secret: str) -> None:
        """Store the secret, replacing any previous value."""
        ...

    async def delete(self, service: str, account: str) -> bool:
        """Delete the secret. Returns False if nothing was stored."""
        ...

    async def is_available(self) -> bool:
        """Check whether a usable credential store is present."""
        ...


class KeyringKeychainStore:
    """KeychainStore backed by the ``keyring`` library.

    keyring is synchronous (and may prompt the OS for access), so calls run in
    a worker thread.
    """

    async def get(self, service: str, account: str) -> str | None:
        logger.debug(f"Reading credential {service}/{account} from keychain")
        try:
            secret = await asyncio.to_thread(keyring.get_password, service, account)
        except keyring.errors.KeyringError as e:
            raise AuthenticationError(
                AuthErrorKind.KEYCHAIN_ERROR,
                "Failed to read credentials from the keychain",
                {"service": service, "account": account},
            ) from e

        logger.debug(f"Credential {service}/{account} found: {secret is not None}")
        return secret

    async def set(self, service: str, account: str, secret: str) -> None:
        try:
            await asyncio.to_thread(keyring.set_password, service, account, secret)
        except keyring.errors.KeyringError as e:
            raise AuthenticationError(
                AuthErrorKind.KEYCHAIN_ERROR,
                "Failed to store credentials in the keychain",
                {"service": service, "account": account},
            ) from e
        logger.info(f"Stored credential {service}/{account} in keychain")

    async def delete(self, service: str, account: str) -> bool:
        try:
            await asyncio.to_thread(keyring.delete_password, service, account)
        except keyring.errors.PasswordDeleteError:
            # Nothing stored under this key
            return False
        except keyring.errors.KeyringError as e:
            raise AuthenticationError(
                AuthErrorKind.KEYCHAIN_ERROR,
                "Failed to delete credentials from the keychain",
                {"service": service, "account": account},
            ) from e
        logger.info(f"Deleted credential {service}/{account} from keychain")
        return True

    async def is_available(self) -> bool:
        backend = keyring.get_keyring()
        available = not isinstance(backend, fail.Keyring)
        logger.debug(f"Keychain backend {type(backend).__name__} available: {available}")
        return available
