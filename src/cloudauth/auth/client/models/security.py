"""Security-related models for the authorization code flow.

Contains the per-attempt PKCE parameters and CSRF state.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters for one authorization attempt.

    Generated fresh for every ``authorize()`` call and discarded after the
    token exchange (RFC 7636).
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    state: str = field(repr=False)
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not (43 <= len(self.code_challenge) <= 128):
            raise ValueError("code_challenge must be 43-128 characters")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
        if not self.state:
            raise ValueError("state must not be empty")
