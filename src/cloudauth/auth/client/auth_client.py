"""Authentication facade for the rest of the CLI.

``AuthClient`` is constructed once at process start (``create_auth_client``)
and passed to whatever needs credentials. All collaborators are injected, so
tests substitute fakes without touching process-wide state.
"""

from __future__ import annotations

import logging
import time
from types import TracebackType
from typing import Self

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.flow import (
    AuthorizeOptions,
    RefreshOptions,
    StatusCallback,
)
from cloudauth.auth.client.models.session import (
    AuthenticationSession,
    UserProfile,
    is_session_expired,
)
from cloudauth.auth.client.primitives.pkce import PKCEGenerator
from cloudauth.auth.client.services.callback import CallbackListener
from cloudauth.auth.client.services.flow import OAuthFlow
from cloudauth.auth.client.services.identity import IdentityResolver
from cloudauth.auth.client.services.session import SessionStore
from cloudauth.auth.client.services.tokens import TokenExchangeClient
from cloudauth.config import OAuthConfig
from cloudauth.platform.browser import WebBrowserLauncher
from cloudauth.platform.keychain import KeyringKeychainStore

logger = logging.getLogger(__name__)

# Refresh grants after which the stored session is no longer usable
_SESSION_ENDING_ERRORS = frozenset(
    {AuthErrorKind.REFRESH_FAILED, AuthErrorKind.USER_DENIED}
)


class AuthClient:
    """Login, logout and credential access for the CLI.

    Holds at most one session (single account) and caches it after the first
    read from the keychain.
    """

    def __init__(
        self,
        config: OAuthConfig,
        flow: OAuthFlow,
        session_store: SessionStore,
        token_client: TokenExchangeClient,
        identity: IdentityResolver,
    ):
        self.config = config
        self._flow = flow
        self._session_store = session_store
        self._token_client = token_client
        self._identity = identity
        self._session: AuthenticationSession | None = None
        self.last_authorization_url: str | None = None

    async def login(
        self, on_status: StatusCallback | None = None, force: bool = False
    ) -> AuthenticationSession:
        """Log in through the browser.

        Args:
            on_status: Receives progress notifications during the flow
            force: Log in again even if a valid session exists

        Returns:
            AuthenticationSession: The new (or still valid existing) session

        Raises:
            AuthenticationError: Any failure from the authorization flow
        """
        start = time.perf_counter()

        existing = await self.status()
        if existing is not None and not force and not is_session_expired(existing):
            logger.info(f"Already logged in as {existing.user.id}")
            return existing

        client_id = self.config.require_client_id()
        self.last_authorization_url = None

        outcome = await self._flow.authorize(
            AuthorizeOptions(
                client_id=client_id,
                base_url=self.config.base_url,
                authorize_path=self.config.endpoints.authorize_path,
                token_path=self.config.endpoints.token_path,
                redirect_uri=self.config.redirect_uri,
                scopes=tuple(self.config.scopes),
                timeout=self.config.callback_timeout,
                port_range=self.config.port_range,
                on_status=on_status,
            )
        )
        self.last_authorization_url = outcome.authorization_url

        user = await self._identity.resolve(outcome.tokens)
        session = AuthenticationSession.create(user, outcome.tokens)

        await self._session_store.save(session)
        self._session = session

        duration = time.perf_counter() - start
        logger.info(f"Login completed for user {user.id} in {duration:.2f}s")
        return session

    async def logout(self) -> None:
        """Forget the session locally and in the keychain."""
        await self._session_store.delete()
        self._session = None
        logger.info("Logged out")

    async def status(self) -> AuthenticationSession | None:
        """Return the current session, or None if not logged in."""
        if self._session is None:
            self._session = await self._session_store.load()
        return self._session

    async def is_authenticated(self) -> bool:
        session = await self.status()
        return session is not None and not is_session_expired(session)

    async def get_user_profile(self) -> UserProfile:
        """Return the logged-in user's profile.

        Raises:
            AuthenticationError: NOT_AUTHENTICATED if not logged in
        """
        return (await self._require_session()).user

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing it first if it expires soon.

        Raises:
            AuthenticationError: NOT_AUTHENTICATED if not logged in, or a
                refresh failure
        """
        session = await self._require_session()

        if is_session_expired(session, self.config.refresh_buffer):
            logger.info(
                f"Access token expiring at {session.metadata.expires_at.isoformat()}, "
                "refreshing"
            )
            session = await self.refresh_session()

        return session.tokens.access_token

    async def refresh_session(self) -> AuthenticationSession:
        """Refresh the session's tokens and store the result.

        A rejected refresh token ends the session; a network failure leaves it
        in place so the next attempt can retry.

        Raises:
            AuthenticationError: NOT_AUTHENTICATED, REFRESH_FAILED,
                USER_DENIED or NETWORK_ERROR
        """
        session = await self._require_session()

        try:
            tokens = await self._flow.refresh(
                RefreshOptions(
                    client_id=self.config.require_client_id(),
                    base_url=self.config.base_url,
                    token_path=self.config.endpoints.token_path,
                    refresh_token=session.tokens.refresh_token,
                    scope=" ".join(session.metadata.scopes) or None,
                )
            )
        except AuthenticationError as e:
            logger.error(f"Token refresh failed for user {session.user.id}: {e.message}")
            if e.kind in _SESSION_ENDING_ERRORS:
                await self.logout()
            raise

        refreshed = session.refreshed(tokens)
        await self._session_store.save(refreshed)
        self._session = refreshed

        logger.info(
            f"Token refreshed for user {session.user.id}, "
            f"expires {refreshed.metadata.expires_at.isoformat()}"
        )
        return refreshed

    async def close(self) -> None:
        await self._token_client.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _require_session(self) -> AuthenticationSession:
        session = await self.status()
        if session is None:
            raise AuthenticationError(
                AuthErrorKind.NOT_AUTHENTICATED,
                "Not authenticated. Please log in first.",
            )
        return session


def create_auth_client(config: OAuthConfig | None = None) -> AuthClient:
    """Wire an ``AuthClient`` with production collaborators.

    Call once at process start and pass the result to consumers.
    """
    config = config or OAuthConfig.from_env()

    token_client = TokenExchangeClient(timeout=config.http_timeout)
    flow = OAuthFlow(
        token_client=token_client,
        listener=CallbackListener(max_port_span=config.max_port_span),
        browser=WebBrowserLauncher(),
        pkce_generator=PKCEGenerator(state_bytes=config.state_bytes),
    )
    session_store = SessionStore(
        KeyringKeychainStore(),
        service=config.keychain_service,
        account=config.keychain_account,
    )
    identity = IdentityResolver(
        token_client,
        client_id=config.client_id,
        base_url=config.base_url,
        discovery_path=config.endpoints.openid_configuration_path,
    )
    return AuthClient(config, flow, session_store, token_client, identity)
