"""User identity from the OpenID Connect ID token.

The ID token's signature is verified against the provider's JWKS when
discovery is reachable. Discovery is best-effort: when it is not, the claims
are read unverified for display only and login continues.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import jwt

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.session import UserProfile
from cloudauth.auth.client.models.tokens import TokenSet
from cloudauth.auth.client.services.tokens import (
    OPENID_CONFIGURATION_PATH,
    TokenExchangeClient,
)

logger = logging.getLogger(__name__)

# Symmetric and "none" algorithms are never accepted for ID tokens
ASYMMETRIC_ALGORITHMS = frozenset(
    {
        "RS256", "RS384", "RS512",
        "PS256", "PS384", "PS512",
        "ES256", "ES384", "ES512",
        "EdDSA",
    }
)


def _str_claim(claims: dict[str, Any], name: str) -> str | None:
    value = claims.get(name)
    return value if isinstance(value, str) and value else None


class IdentityResolver:
    """Turns issued tokens into a ``UserProfile``."""

    def __init__(
        self,
        token_client: TokenExchangeClient,
        client_id: str,
        base_url: str,
        discovery_path: str = OPENID_CONFIGURATION_PATH,
        leeway: float = 30.0,
    ):
        self._token_client = token_client
        self.client_id = client_id
        self.base_url = base_url
        self.discovery_path = discovery_path
        self.leeway = leeway

    async def resolve(self, tokens: TokenSet) -> UserProfile:
        """Build the user profile for a token set.

        Raises:
            AuthenticationError: INVALID_RESPONSE if the ID token is malformed,
                fails verification or has no subject
        """
        if not tokens.id_token:
            logger.warning("No ID token provided, using placeholder profile")
            return self.placeholder_profile()

        claims = await self._claims(tokens.id_token)
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                'Missing required "sub" claim in ID token',
            )

        logger.info(f"Resolved identity for subject {subject}")
        email_verified = claims.get("email_verified")
        return UserProfile(
            id=subject,
            email=_str_claim(claims, "email") or self._placeholder_email(),
            name=_str_claim(claims, "name")
            or _str_claim(claims, "preferred_username")
            or "CLI User",
            email_verified=email_verified if isinstance(email_verified, bool) else None,
            organization=_str_claim(claims, "org"),
            picture=_str_claim(claims, "picture"),
        )

    def placeholder_profile(self) -> UserProfile:
        return UserProfile(
            id="unknown",
            email=self._placeholder_email(),
            name="CLI User",
            email_verified=False,
        )

    async def _claims(self, id_token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "ID token is not a valid JWT"
            ) from e

        try:
            config = await self._token_client.get_openid_configuration(
                self.base_url, self.discovery_path
            )
            jwks = await self._token_client.fetch_jwks(config.jwks_uri)
        except AuthenticationError as e:
            logger.warning(
                f"ID token signature not verified, discovery unavailable: {e.message}"
            )
            return self._decode_unverified(id_token)

        if not config.supports_s256():
            logger.warning(
                f"Authorization server at {config.issuer} does not advertise "
                "S256 PKCE support"
            )

        key = self._select_key(jwks, header)
        algorithms = [
            alg
            for alg in config.id_token_signing_alg_values_supported
            if alg in ASYMMETRIC_ALGORITHMS
        ] or ["RS256"]

        try:
            claims = jwt.decode(
                id_token,
                key=key,
                algorithms=algorithms,
                audience=self.client_id,
                issuer=config.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "aud", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            logger.error(f"Failed to verify ID token: {e}")
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, f"Failed to verify ID token: {e}"
            ) from e

        logger.debug("ID token signature verified")
        return claims

    def _select_key(self, jwks: dict[str, Any], header: dict[str, Any]) -> Any:
        """Pick the signing key named by the token header's ``kid``."""
        try:
            key_set = jwt.PyJWKSet.from_dict(jwks)
        except jwt.PyJWTError as e:
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "JWKS contains no usable keys"
            ) from e

        kid = header.get("kid")
        if kid is None and len(key_set.keys) == 1:
            return key_set.keys[0].key

        for jwk in key_set.keys:
            if jwk.key_id == kid:
                return jwk.key

        raise AuthenticationError(
            AuthErrorKind.INVALID_RESPONSE,
            f"Unknown ID token signing key: {kid}",
        )

    def _decode_unverified(self, id_token: str) -> dict[str, Any]:
        try:
            return jwt.decode(id_token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "ID token is not a valid JWT"
            ) from e

    def _placeholder_email(self) -> str:
        host = urlparse(self.base_url).hostname or "localhost"
        return f"unknown@{host}"
