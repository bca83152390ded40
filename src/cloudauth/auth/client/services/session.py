"""Session persistence in the OS keychain.

Exactly one session is stored, under a fixed (service, account) key.
Corrupted entries are deleted and reported as "no session" so the user can
always log in again.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.session import (
    AuthenticationSession,
    is_session_expired,
)
from cloudauth.auth.constants import KEYCHAIN_ACCOUNT, KEYCHAIN_SERVICE
from cloudauth.platform.keychain import KeychainStore

logger = logging.getLogger(__name__)


class SessionStore:
    """Loads, saves and deletes the authentication session."""

    def __init__(
        self,
        keychain: KeychainStore,
        service: str = KEYCHAIN_SERVICE,
        account: str = KEYCHAIN_ACCOUNT,
    ):
        self.keychain = keychain
        self.service = service
        self.account = account

    async def load(self) -> AuthenticationSession | None:
        """Load the stored session.

        Returns:
            The session, or None if none is stored or the entry was corrupted
            (in which case it is deleted)

        Raises:
            AuthenticationError: KEYCHAIN_ERROR if the keychain itself fails
        """
        blob = await self.keychain.get(self.service, self.account)
        if blob is None:
            return None

        try:
            return AuthenticationSession.model_validate_json(blob)
        except ValidationError as e:
            logger.warning(
                f"Discarding corrupted session in {self.service}/{self.account}: "
                f"{e.error_count()} validation error(s)"
            )
            await self.delete()
            return None

    async def save(self, session: AuthenticationSession) -> None:
        """Store the session, replacing any previous one."""
        await self.keychain.set(self.service, self.account, session.to_json())
        logger.debug(f"Saved session for user {session.user.id}")

    async def delete(self) -> bool:
        """Delete the stored session. Safe to call when there is none."""
        return await self.keychain.delete(self.service, self.account)

    async def require_valid(self, buffer: float = 0.0) -> AuthenticationSession:
        """Load the session and require it to be unexpired.

        Args:
            buffer: Seconds before expiry at which the session already counts
                as expired

        Raises:
            AuthenticationError: NOT_AUTHENTICATED if there is no session or it
                expires within the buffer
        """
        session = await self.load()
        if session is None:
            raise AuthenticationError(
                AuthErrorKind.NOT_AUTHENTICATED,
                "Not authenticated. Please log in first.",
            )
        if is_session_expired(session, buffer):
            raise AuthenticationError(
                AuthErrorKind.NOT_AUTHENTICATED,
                "Session expired. Please log in again.",
                {"expires_at": session.metadata.expires_at.isoformat()},
            )
        return session

    async def is_available(self) -> bool:
        return await self.keychain.is_available()
