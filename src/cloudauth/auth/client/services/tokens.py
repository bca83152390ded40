"""Token endpoint client.

Implements the RFC 6749 authorization code and refresh token grants with the
PKCE code verifier (RFC 7636), plus best-effort OpenID Connect discovery.
Every outcome is classified into the authentication error taxonomy here, so
callers never inspect HTTP responses.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import ValidationError

from cloudauth.auth.client.models.discovery import OpenIDConfiguration
from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.tokens import (
    RefreshTokenRequest,
    TokenExchangeRequest,
    TokenResponse,
    TokenSet,
)
from cloudauth.auth.constants import HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"
ERROR_RESPONSE_FIELDS = ("error", "error_description", "error_uri")


class TokenExchangeClient:
    """Performs code exchange and refresh against the token endpoint.

    Each call issues exactly one form-encoded POST; there is no retry at this
    layer. Outcomes are classified as:

    - transport failure or an undecodable body: NETWORK_ERROR
    - non-2xx with ``error == "access_denied"``: USER_DENIED
    - any other non-2xx: INVALID_RESPONSE
    - 2xx that is not a valid Bearer token set: INVALID_RESPONSE
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        """Initialize the token client.

        Args:
            http_client: Client to send requests with; one is created (and
                owned) when omitted
            timeout: HTTP request timeout in seconds for an owned client
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code(self, request: TokenExchangeRequest) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            request: Code, redirect URI and PKCE verifier

        Returns:
            TokenSet: Issued tokens

        Raises:
            AuthenticationError: Classified failure
        """
        logger.debug(
            f"Exchanging authorization code at {request.token_endpoint} "
            f"for client {request.client_id}"
        )
        data = await self._post_form(
            request.token_endpoint, request.to_form_data(), "code exchange"
        )
        tokens = self._to_token_set(data, "code exchange")
        logger.info("Authorization code exchanged for tokens")
        return tokens

    async def refresh(self, request: RefreshTokenRequest) -> TokenSet:
        """Obtain new tokens with a refresh token.

        Servers that do not rotate refresh tokens may omit ``refresh_token``;
        the presented one is kept in that case.

        Args:
            request: Refresh token and optional scope

        Returns:
            TokenSet: Refreshed tokens

        Raises:
            AuthenticationError: Classified failure
        """
        logger.debug(f"Refreshing access token at {request.token_endpoint}")
        data = await self._post_form(
            request.token_endpoint, request.to_form_data(), "token refresh"
        )
        if not data.get("refresh_token"):
            data["refresh_token"] = request.refresh_token
        if not data.get("scope") and request.scope:
            data["scope"] = request.scope
        tokens = self._to_token_set(data, "token refresh")
        logger.info("Access token refreshed")
        return tokens

    async def get_openid_configuration(
        self, base_url: str, path: str = OPENID_CONFIGURATION_PATH
    ) -> OpenIDConfiguration:
        """Fetch the OpenID Connect discovery document.

        Best-effort: callers must treat failure as "not available" and carry
        on. The configured path is tried first, then the root well-known URL.

        Args:
            base_url: Service base URL
            path: Discovery document path relative to the base URL

        Returns:
            OpenIDConfiguration: Parsed discovery document

        Raises:
            AuthenticationError: NETWORK_ERROR or INVALID_RESPONSE
        """
        last_error: AuthenticationError | None = None

        for url in self._build_discovery_urls(base_url, path):
            try:
                logger.debug(f"Trying OpenID configuration discovery: {url}")
                response = await self._http_client.get(
                    url, headers={"Accept": "application/json"}
                )
            except httpx.HTTPError as e:
                last_error = AuthenticationError(
                    AuthErrorKind.NETWORK_ERROR,
                    f"Failed to fetch OpenID configuration from {url}: {e}",
                )
                last_error.__cause__ = e
                continue

            if not 200 <= response.status_code < 300:
                last_error = AuthenticationError(
                    AuthErrorKind.NETWORK_ERROR,
                    f"Failed to fetch OpenID configuration: HTTP {response.status_code}",
                    {"url": url},
                )
                if response.status_code >= 500:
                    # Server error - don't try other URLs
                    break
                continue

            try:
                config = OpenIDConfiguration.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                last_error = AuthenticationError(
                    AuthErrorKind.INVALID_RESPONSE,
                    f"Invalid OpenID configuration from {url}",
                )
                last_error.__cause__ = e
                continue

            logger.debug(f"Discovered OpenID configuration from {url}")
            return config

        assert last_error is not None
        raise last_error

    async def fetch_jwks(self, jwks_uri: str) -> dict[str, Any]:
        """Fetch a JSON Web Key Set.

        Raises:
            AuthenticationError: NETWORK_ERROR or INVALID_RESPONSE
        """
        try:
            response = await self._http_client.get(jwks_uri)
        except httpx.HTTPError as e:
            raise AuthenticationError(
                AuthErrorKind.NETWORK_ERROR, f"Failed to fetch JWKS: {e}"
            ) from e

        if not 200 <= response.status_code < 300:
            raise AuthenticationError(
                AuthErrorKind.NETWORK_ERROR,
                f"Failed to fetch JWKS: HTTP {response.status_code}",
                {"url": jwks_uri},
            )

        try:
            jwks = response.json()
        except ValueError as e:
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "JWKS response is not JSON"
            ) from e

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE, "JWKS response has no keys"
            )
        return jwks

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def _post_form(
        self, endpoint: str, form_data: dict[str, str], operation: str
    ) -> dict[str, Any]:
        """Send one token request and return the JSON body of a 2xx response."""
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        try:
            response = await self._http_client.post(
                endpoint, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(
                AuthErrorKind.NETWORK_ERROR,
                f"Network error during {operation}: {e}",
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise AuthenticationError(
                AuthErrorKind.NETWORK_ERROR,
                f"Unreadable response during {operation} "
                f"(HTTP {response.status_code})",
            ) from e

        if not isinstance(body, dict):
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                f"OAuth {operation} returned a non-object response",
            )

        if 200 <= response.status_code < 300:
            return body

        # Error response (RFC 6749 Section 5.2), only its string fields count
        parsed = TokenResponse.model_validate(
            {
                k: body[k]
                for k in ERROR_RESPONSE_FIELDS
                if isinstance(body.get(k), str)
            }
        )
        logger.warning(
            f"OAuth {operation} failed with {response.status_code}: "
            f"{parsed.error or 'no error code'}"
        )

        if parsed.error == "access_denied":
            raise AuthenticationError(
                AuthErrorKind.USER_DENIED,
                f"OAuth {operation} failed: {parsed.describe_error()}",
                {"status_code": response.status_code, "error": parsed.error},
            )

        message = (
            parsed.describe_error()
            if parsed.is_error()
            else f"HTTP {response.status_code}"
        )
        raise AuthenticationError(
            AuthErrorKind.INVALID_RESPONSE,
            f"OAuth {operation} failed: {message}",
            {"status_code": response.status_code, "error": parsed.error},
        )

    def _to_token_set(self, data: dict[str, Any], operation: str) -> TokenSet:
        """Validate a successful token response (RFC 6749 Section 5.1)."""
        token_type = data.get("token_type")
        if not isinstance(token_type, str) or token_type.lower() != "bearer":
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                f"OAuth {operation} returned unsupported token type: {token_type}",
            )

        try:
            return TokenSet(
                access_token=data.get("access_token"),
                token_type=token_type,
                expires_in=data.get("expires_in"),
                refresh_token=data.get("refresh_token"),
                id_token=data.get("id_token"),
                scope=data.get("scope") or "",
            )
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise AuthenticationError(
                AuthErrorKind.INVALID_RESPONSE,
                f"OAuth {operation} returned an invalid token response "
                f"({fields or 'malformed'})",
            ) from e

    def _build_discovery_urls(self, base_url: str, path: str) -> list[str]:
        """Build ordered list of discovery URLs to try."""
        parsed = urlparse(base_url)
        root = f"{parsed.scheme}://{parsed.netloc}"
        urls = [urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))]

        root_url = urljoin(root, OPENID_CONFIGURATION_PATH)
        if root_url not in urls:
            urls.append(root_url)
        return urls
