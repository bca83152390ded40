"""PKCE (Proof Key for Code Exchange) generator.

Implements RFC 7636 parameter generation to prevent authorization code
interception attacks. Only the S256 method is ever produced.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from cloudauth.auth.client.models.security import PKCEParameters
from cloudauth.auth.constants import (
    DEFAULT_STATE_BYTES,
    DEFAULT_VERIFIER_BYTES,
    MIN_STATE_BYTES,
)


def base64url_encode(data: bytes) -> str:
    """Base64url-encode without padding (RFC 4648 Section 5)."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def compute_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64url_encode(digest)


class PKCEGenerator:
    """Generates PKCE parameters and CSRF state for authorization attempts.

    Randomness comes from ``secrets`` (the OS CSPRNG). If it fails the error
    propagates; there is no fallback to a weaker source or to the ``plain``
    method.
    """

    def __init__(
        self,
        verifier_bytes: int = DEFAULT_VERIFIER_BYTES,
        state_bytes: int = DEFAULT_STATE_BYTES,
    ) -> None:
        """Initialize the generator.

        Args:
            verifier_bytes: Random bytes behind the code verifier. 32..96 keeps
                the encoded verifier within the 43..128 characters RFC 7636
                allows.
            state_bytes: Random bytes behind the state parameter, at least 16.

        Raises:
            ValueError: If either size is out of range
        """
        if not (32 <= verifier_bytes <= 96):
            raise ValueError("verifier_bytes must be between 32 and 96")
        if state_bytes < MIN_STATE_BYTES:
            raise ValueError(f"state_bytes must be at least {MIN_STATE_BYTES}")
        self.verifier_bytes = verifier_bytes
        self.state_bytes = state_bytes

    def generate(self) -> PKCEParameters:
        """Generate new PKCE parameters for one authorization attempt.

        Returns:
            PKCEParameters: Immutable verifier, challenge and state
        """
        code_verifier = base64url_encode(secrets.token_bytes(self.verifier_bytes))
        code_challenge = compute_code_challenge(code_verifier)

        # Generate state parameter for CSRF protection
        state = base64url_encode(secrets.token_bytes(self.state_bytes))

        return PKCEParameters(
            code_verifier=code_verifier,
            code_challenge=code_challenge,
            code_challenge_method="S256",
            state=state,
        )
