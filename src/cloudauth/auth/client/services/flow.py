"""Authorization code + PKCE flow orchestration.

Coordinates PKCE generation, the loopback callback listener, the system
browser and the token endpoint into ``authorize()`` and ``refresh()``.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urljoin

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.flow import (
    TERMINAL_STATES,
    AuthorizationOutcome,
    AuthorizationRequest,
    AuthorizeOptions,
    FlowState,
    FlowStatus,
    RefreshOptions,
)
from cloudauth.auth.client.models.security import PKCEParameters
from cloudauth.auth.client.models.tokens import (
    RefreshTokenRequest,
    TokenExchangeRequest,
    TokenSet,
)
from cloudauth.auth.client.primitives.pkce import PKCEGenerator
from cloudauth.auth.client.services.callback import (
    CallbackListener,
    CallbackListenerOptions,
)
from cloudauth.auth.client.services.tokens import TokenExchangeClient
from cloudauth.platform.browser import BrowserLauncher

logger = logging.getLogger(__name__)


def resolve_endpoint(base_url: str, path: str) -> str:
    return urljoin(base_url, path)


def build_authorization_url(
    options: AuthorizeOptions, redirect_uri: str, pkce: PKCEParameters
) -> str:
    """Build the browser authorization URL for one attempt."""
    return AuthorizationRequest(
        base_url=options.base_url,
        authorize_path=options.authorize_path,
        client_id=options.client_id,
        redirect_uri=redirect_uri,
        scopes=tuple(options.scopes),
        code_challenge=pkce.code_challenge,
        code_challenge_method=pkce.code_challenge_method,
        state=pkce.state,
    ).build_authorization_url()


class OAuthFlow:
    """Runs the OAuth 2.0 Authorization Code flow with PKCE.

    Every ``authorize()`` call:
    - generates fresh PKCE parameters and state
    - binds the callback listener before the browser is launched
    - stops the listener exactly once, whatever the outcome
    - exchanges the code with the PKCE verifier

    ``history`` records the states visited by the latest call.
    """

    def __init__(
        self,
        token_client: TokenExchangeClient,
        listener: CallbackListener,
        browser: BrowserLauncher,
        pkce_generator: PKCEGenerator | None = None,
    ):
        self._token_client = token_client
        self._listener = listener
        self._browser = browser
        self._pkce_generator = pkce_generator or PKCEGenerator()
        self.history: list[FlowState] = []

    @property
    def state(self) -> FlowState:
        return self.history[-1] if self.history else FlowState.IDLE

    async def authorize(self, options: AuthorizeOptions) -> AuthorizationOutcome:
        """Authorize the user in the browser and obtain tokens.

        Args:
            options: Client, endpoints, redirect URI, scopes, timeout and an
                optional status callback

        Returns:
            AuthorizationOutcome: Issued tokens and the authorization URL that
            was opened

        Raises:
            AuthenticationError: BROWSER_FAILED, USER_DENIED,
                INVALID_RESPONSE, NETWORK_ERROR or INVALID_CONFIG
        """
        self.history = []
        self._transition(FlowState.IDLE)

        pkce = self._pkce_generator.generate()

        self._transition(FlowState.BUILDING_URL)
        redirect_uri = options.redirect_uri
        authorization_url = build_authorization_url(options, redirect_uri, pkce)

        listener_options = CallbackListenerOptions(
            redirect_uri=options.redirect_uri,
            expected_state=pkce.state,
            timeout=options.timeout,
            port_range=options.port_range,
        )

        try:
            # Listener must be bound before the browser can redirect to it
            try:
                await self._listener.listen(listener_options)
            except AuthenticationError:
                self._transition(FlowState.FAILED)
                raise
            self._transition(FlowState.LISTENING)

            bound_uri = self._listener.redirect_uri or options.redirect_uri
            if bound_uri != redirect_uri:
                logger.debug(f"Callback bound to {bound_uri}, rebuilding URL")
                redirect_uri = bound_uri
                authorization_url = build_authorization_url(
                    options, redirect_uri, pkce
                )

            self._emit(options, FlowStatus.OPENING_BROWSER)
            await self._open_browser(authorization_url)
            self._transition(FlowState.BROWSER_OPENED)

            self._emit(options, FlowStatus.WAITING_FOR_AUTHENTICATION)
            self._transition(FlowState.WAITING_FOR_REDIRECT)
            try:
                callback = await self._listener.wait_for_callback(listener_options)
            except AuthenticationError as e:
                reason = e.context.get("reason")
                if reason == "timeout":
                    self._transition(FlowState.TIMED_OUT)
                elif reason == "cancelled":
                    self._transition(FlowState.CANCELLED)
                else:
                    self._transition(FlowState.FAILED)
                raise
            except asyncio.CancelledError:
                self._transition(FlowState.CANCELLED)
                raise
        finally:
            await self._listener.stop()

        if callback.is_error():
            self._transition(FlowState.ERROR_RECEIVED)
            denied = callback.error == "access_denied"
            if denied:
                logger.info("User denied the authorization request")
            else:
                logger.warning(f"Authorization callback contained error: {callback.error}")
            raise AuthenticationError(
                AuthErrorKind.USER_DENIED if denied else AuthErrorKind.INVALID_RESPONSE,
                callback.error_description or f"OAuth callback error: {callback.error}",
                {"error": callback.error, "error_uri": callback.error_uri},
            )

        if not callback.is_success():
            self._transition(FlowState.FAILED)
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "Missing authorization code"
            )
        self._transition(FlowState.CODE_RECEIVED)

        self._emit(options, FlowStatus.EXCHANGING_TOKENS)
        self._transition(FlowState.EXCHANGING_TOKENS)
        try:
            tokens = await self._token_client.exchange_code(
                TokenExchangeRequest(
                    token_endpoint=resolve_endpoint(options.base_url, options.token_path),
                    client_id=options.client_id,
                    code=callback.code,
                    redirect_uri=redirect_uri,
                    code_verifier=pkce.code_verifier,
                )
            )
        except AuthenticationError:
            self._transition(FlowState.EXCHANGE_FAILED)
            raise

        self._transition(FlowState.TOKENS_ISSUED)
        logger.info(f"Authorization completed for client {options.client_id}")
        return AuthorizationOutcome(tokens=tokens, authorization_url=authorization_url)

    async def refresh(self, options: RefreshOptions) -> TokenSet:
        """Refresh tokens.

        An INVALID_RESPONSE from the token endpoint becomes REFRESH_FAILED so
        callers can ask the user to log in again. Other errors pass through.

        Raises:
            AuthenticationError: REFRESH_FAILED, USER_DENIED or NETWORK_ERROR
        """
        request = RefreshTokenRequest(
            token_endpoint=resolve_endpoint(options.base_url, options.token_path),
            client_id=options.client_id,
            refresh_token=options.refresh_token,
            scope=options.scope,
        )
        try:
            return await self._token_client.refresh(request)
        except AuthenticationError as e:
            if e.kind is AuthErrorKind.INVALID_RESPONSE:
                raise e.reclassify(AuthErrorKind.REFRESH_FAILED) from e
            raise

    async def _open_browser(self, url: str) -> None:
        try:
            await self._browser.open_url(url)
        except AuthenticationError:
            self._transition(FlowState.FAILED)
            raise
        except Exception as e:
            self._transition(FlowState.FAILED)
            raise AuthenticationError(
                AuthErrorKind.BROWSER_FAILED,
                "Failed to open browser",
                {"error": str(e)},
            ) from e

    def _emit(self, options: AuthorizeOptions, status: FlowStatus) -> None:
        if options.on_status is not None:
            options.on_status(status)

    def _transition(self, state: FlowState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(
                f"Authorization flow already finished in state {self.state.value}"
            )
        if state in self.history:
            raise RuntimeError(f"Authorization flow re-entered state {state.value}")
        self.history.append(state)
        logger.debug(f"Authorization flow state: {state.value}")
