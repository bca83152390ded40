"""Authorization flow models.

Contains the authorization request, the parsed redirect callback and the
options, statuses and states of one ``authorize()`` invocation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlencode, urljoin

from cloudauth.auth.client.models.errors import AuthenticationError
from cloudauth.auth.client.models.tokens import TokenSet
from cloudauth.auth.constants import CALLBACK_TIMEOUT_SECONDS


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the browser navigation."""

    base_url: str
    authorize_path: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    code_challenge: str
    code_challenge_method: str
    state: str

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "state": self.state,
        }
        endpoint = urljoin(self.base_url, self.authorize_path)
        return f"{endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class CallbackResult:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class CallbackOk:
    """A well-formed redirect."""

    result: CallbackResult


@dataclass(frozen=True)
class CallbackErr:
    """A redirect that could not be accepted."""

    error: AuthenticationError


CallbackParseResult = CallbackOk | CallbackErr


class FlowStatus(str, Enum):
    """User-facing progress notifications emitted by ``authorize()``."""

    OPENING_BROWSER = "opening-browser"
    WAITING_FOR_AUTHENTICATION = "waiting-for-authentication"
    EXCHANGING_TOKENS = "exchanging-tokens"


class FlowState(str, Enum):
    """States of a single ``authorize()`` invocation."""

    IDLE = "idle"
    BUILDING_URL = "building-url"
    LISTENING = "listening"
    BROWSER_OPENED = "browser-opened"
    WAITING_FOR_REDIRECT = "waiting-for-redirect"
    CODE_RECEIVED = "code-received"
    ERROR_RECEIVED = "error-received"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    EXCHANGING_TOKENS = "exchanging-tokens"
    TOKENS_ISSUED = "tokens-issued"
    EXCHANGE_FAILED = "exchange-failed"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        FlowState.TOKENS_ISSUED,
        FlowState.EXCHANGE_FAILED,
        FlowState.ERROR_RECEIVED,
        FlowState.TIMED_OUT,
        FlowState.CANCELLED,
        FlowState.FAILED,
    }
)


StatusCallback = Callable[[FlowStatus], None]


@dataclass(frozen=True)
class AuthorizeOptions:
    client_id: str
    base_url: str
    authorize_path: str
    token_path: str
    redirect_uri: str
    scopes: tuple[str, ...]
    timeout: float = CALLBACK_TIMEOUT_SECONDS
    port_range: tuple[int, int] | None = None
    on_status: StatusCallback | None = field(default=None, compare=False)


@dataclass(frozen=True)
class RefreshOptions:
    client_id: str
    base_url: str
    token_path: str
    refresh_token: str = field(repr=False)
    scope: str | None = None


@dataclass(frozen=True)
class AuthorizationOutcome:
    """Result of a successful ``authorize()``.

    The URL is kept so a UI can offer it for manual copying.
    """

    tokens: TokenSet
    authorization_url: str
