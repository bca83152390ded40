"""OAuth client configuration.

Defaults target the hosted service; deployments override them through
environment variables (optionally from a ``.env`` file).
"""

from __future__ import annotations

import logging
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.constants import (
    CALLBACK_TIMEOUT_SECONDS,
    DEFAULT_STATE_BYTES,
    HTTP_TIMEOUT_SECONDS,
    KEYCHAIN_ACCOUNT,
    KEYCHAIN_SERVICE,
    MAX_PORT_RANGE_SIZE,
    MIN_STATE_BYTES,
    REFRESH_BUFFER_SECONDS,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLOUDAUTH_"


class OAuthEndpoints(BaseModel):
    authorize_path: str = "/auth/v1/oauth/authorize"
    token_path: str = "/auth/v1/oauth/token"
    openid_configuration_path: str = "/.well-known/openid-configuration"


class OAuthConfig(BaseModel):
    """Everything needed to log in against one service."""

    client_id: str = ""
    base_url: str = "https://app.uxlint.org"
    endpoints: OAuthEndpoints = Field(default_factory=OAuthEndpoints)
    redirect_uri: str = "http://localhost:8080/callback"
    scopes: list[str] = Field(
        default_factory=lambda: ["openid", "profile", "email", "uxlint:api"]
    )

    callback_timeout: float = Field(default=CALLBACK_TIMEOUT_SECONDS, gt=0)
    http_timeout: float = Field(default=HTTP_TIMEOUT_SECONDS, gt=0)
    refresh_buffer: float = Field(default=REFRESH_BUFFER_SECONDS, ge=0)

    # Optional inclusive range scanned when the redirect port is taken
    port_range: tuple[int, int] | None = None
    max_port_span: int = Field(default=MAX_PORT_RANGE_SIZE, ge=1, le=1000)
    state_bytes: int = Field(default=DEFAULT_STATE_BYTES, ge=MIN_STATE_BYTES)

    keychain_service: str = KEYCHAIN_SERVICE
    keychain_account: str = KEYCHAIN_ACCOUNT

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")

    @classmethod
    def from_env(cls, dotenv: bool = True, **overrides) -> OAuthConfig:
        """Build a config from ``CLOUDAUTH_*`` environment variables.

        Args:
            dotenv: Load a ``.env`` file from the working directory first
            **overrides: Field values that take precedence over the environment
        """
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))

        values: dict = {}
        if client_id := os.environ.get(f"{ENV_PREFIX}CLIENT_ID"):
            values["client_id"] = client_id
        if base_url := os.environ.get(f"{ENV_PREFIX}BASE_URL"):
            values["base_url"] = base_url
        if redirect_uri := os.environ.get(f"{ENV_PREFIX}REDIRECT_URI"):
            values["redirect_uri"] = redirect_uri
        if scopes := os.environ.get(f"{ENV_PREFIX}SCOPES"):
            values["scopes"] = scopes.split()

        values.update(overrides)
        config = cls(**values)
        logger.debug(f"Loaded OAuth config for {config.base_url}")
        return config

    def require_client_id(self) -> str:
        """Return the client id or fail with INVALID_CONFIG."""
        if not self.client_id.strip():
            raise AuthenticationError(
                AuthErrorKind.INVALID_CONFIG,
                f"Missing OAuth client ID. Set {ENV_PREFIX}CLIENT_ID in your environment.",
            )
        return self.client_id
