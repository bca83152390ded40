"""Redirect callback parsing and loopback validation.

Pure functions used by the callback listener: redirect URI validation,
candidate port selection, one-step redirect parsing and state comparison.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlparse, urlunparse

from cloudauth.auth.client.models.errors import (
    AuthenticationError,
    AuthErrorKind,
    StateMismatchError,
)
from cloudauth.auth.client.models.flow import (
    CallbackErr,
    CallbackOk,
    CallbackParseResult,
    CallbackResult,
)
from cloudauth.auth.constants import (
    LOOPBACK_HOSTS,
    MAX_AUTH_CODE_LENGTH,
    MAX_PORT_RANGE_SIZE,
    MAX_STATE_LENGTH,
)


@dataclass(frozen=True)
class LoopbackRedirect:
    """A validated loopback redirect URI split into its parts."""

    uri: str
    scheme: str
    host: str
    port: int
    path: str

    @property
    def bind_host(self) -> str:
        # Never bind a wildcard or public interface
        return "127.0.0.1"

    def with_port(self, port: int) -> str:
        """Redirect URI for the bound port, the configured one if it is unchanged."""
        if port == self.port:
            return self.uri
        return urlunparse((self.scheme, f"{self.host}:{port}", self.path, "", "", ""))


def parse_loopback_redirect(redirect_uri: str) -> LoopbackRedirect:
    """Validate that a redirect URI points at the loopback interface.

    Args:
        redirect_uri: Configured redirect URI

    Returns:
        The parsed redirect

    Raises:
        AuthenticationError: INVALID_CONFIG if the URI is not a plain http
            loopback URI
    """
    try:
        parsed = urlparse(redirect_uri)
        port = parsed.port
    except ValueError as e:
        raise AuthenticationError(
            AuthErrorKind.INVALID_CONFIG,
            f"Invalid redirect URI: {redirect_uri}",
        ) from e

    if parsed.scheme != "http":
        raise AuthenticationError(
            AuthErrorKind.INVALID_CONFIG,
            f"Redirect URI must use http on the loopback interface: {redirect_uri}",
        )
    if parsed.hostname not in LOOPBACK_HOSTS:
        raise AuthenticationError(
            AuthErrorKind.INVALID_CONFIG,
            f"Redirect URI host must be localhost or 127.0.0.1, got {parsed.hostname}",
        )

    return LoopbackRedirect(
        uri=redirect_uri,
        scheme=parsed.scheme,
        host=parsed.hostname,
        port=port if port is not None else 80,
        path=parsed.path or "/",
    )


def candidate_ports(
    default_port: int,
    port_range: tuple[int, int] | None = None,
    max_span: int = MAX_PORT_RANGE_SIZE,
) -> list[int]:
    """Build the ordered list of ports the listener may try.

    Args:
        default_port: Port from the redirect URI, used when no range is given
        port_range: Inclusive (start, end) range to scan instead
        max_span: Hard cap on the number of ports returned

    Returns:
        At most ``max_span`` ports, in the order they should be tried

    Raises:
        AuthenticationError: INVALID_CONFIG for an empty or out of bounds range
    """
    if max_span < 1:
        raise AuthenticationError(
            AuthErrorKind.INVALID_CONFIG, "max_span must be at least 1"
        )
    if port_range is None:
        return [default_port]

    start, end = port_range
    if not (0 < start <= end <= 65535):
        raise AuthenticationError(
            AuthErrorKind.INVALID_CONFIG,
            f"Invalid callback port range: {start}-{end}",
        )
    return list(range(start, min(end, start + max_span - 1) + 1))


def _is_bounded(value: str, limit: int) -> bool:
    return 0 < len(value) <= limit


def parse_callback_params(params: Mapping[str, str]) -> CallbackParseResult:
    """Parse redirect query parameters into a tagged result.

    This is the only place the redirect payload's shape is inspected.

    Args:
        params: Query parameters of the redirect request

    Returns:
        CallbackOk with the parsed result, or CallbackErr describing why the
        redirect was rejected
    """
    code = params.get("code")
    state = params.get("state")
    error = params.get("error")

    if state is not None and not _is_bounded(state, MAX_STATE_LENGTH):
        return CallbackErr(
            AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                "Callback state parameter is empty or too long",
            )
        )

    # Authorization server reported an error (RFC 6749 Section 4.1.2.1)
    if error is not None:
        if not _is_bounded(error, MAX_STATE_LENGTH):
            return CallbackErr(
                AuthenticationError(
                    AuthErrorKind.INVALID_RESPONSE,
                    "Callback error parameter is empty or too long",
                )
            )
        return CallbackOk(
            CallbackResult(
                code=code or None,
                state=state,
                error=error,
                error_description=params.get("error_description"),
                error_uri=params.get("error_uri"),
            )
        )

    if code is None:
        return CallbackErr(
            AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "Missing authorization code"
            )
        )
    if not _is_bounded(code, MAX_AUTH_CODE_LENGTH):
        return CallbackErr(
            AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                "Authorization code is empty or too long",
            )
        )
    if state is None:
        return CallbackErr(
            AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "Missing state parameter"
            )
        )

    return CallbackOk(CallbackResult(code=code, state=state))


def check_state(result: CallbackResult, expected_state: str) -> None:
    """Validate the redirect's state against the one sent.

    Error redirects without a state are let through so the server's error is
    reported; any state that is present must match.

    Raises:
        StateMismatchError: If the state is missing or does not match
    """
    if result.state is None:
        if result.is_error():
            return
        raise StateMismatchError("Callback missing required state parameter")

    if not secrets.compare_digest(
        result.state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        raise StateMismatchError("State parameter mismatch - possible CSRF attack")
