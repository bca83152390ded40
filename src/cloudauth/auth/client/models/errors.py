"""Error taxonomy for CLI authentication.

Every failure surfaced by the auth client is an ``AuthenticationError`` with an
explicit ``kind``. Callers branch on ``kind``; expected outcomes such as a user
denying consent share the same type as real faults.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class AuthErrorKind(str, Enum):
    """Discriminant for every authentication failure."""

    NETWORK_ERROR = "AUTH_NETWORK_ERROR"
    INVALID_RESPONSE = "AUTH_INVALID_RESPONSE"
    USER_DENIED = "AUTH_USER_DENIED"
    REFRESH_FAILED = "AUTH_REFRESH_FAILED"
    KEYCHAIN_ERROR = "AUTH_KEYCHAIN_ERROR"
    NOT_AUTHENTICATED = "AUTH_NOT_AUTHENTICATED"
    BROWSER_FAILED = "AUTH_BROWSER_FAILED"
    INVALID_CONFIG = "AUTH_INVALID_CONFIG"


class AuthenticationError(Exception):
    """Classified authentication failure.

    The original exception, when there is one, is attached as ``__cause__``
    through ``raise ... from``.
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = dict(context or {})

    @property
    def is_expected(self) -> bool:
        """True for outcomes that are not bugs (the user said no)."""
        return self.kind is AuthErrorKind.USER_DENIED

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def reclassify(self, kind: AuthErrorKind) -> AuthenticationError:
        """Return a copy of this error with a different kind.

        The message and context are kept and this error becomes the cause.
        """
        error = AuthenticationError(kind, self.message, self.context)
        error.__cause__ = self
        return error

    def __repr__(self) -> str:
        return f"AuthenticationError({self.kind.name}, {self.message!r})"


class StateMismatchError(AuthenticationError):
    """Raised when a redirect's state does not match the one we sent.

    Indicates a CSRF attempt or a stale browser tab from an earlier login.
    """

    def __init__(self, message: str = "State parameter mismatch") -> None:
        super().__init__(
            AuthErrorKind.INVALID_RESPONSE,
            message,
            {"reason": "state_mismatch"},
        )
