"""Token models for the token endpoint.

Contains the issued token set, the form-encoded grant requests and the raw
token endpoint response.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TokenSet(BaseModel):
    """Tokens issued by the token endpoint.

    Serialized with camelCase keys when stored inside a session.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    access_token: str = Field(min_length=1, repr=False)
    token_type: str = "Bearer"
    expires_in: int = Field(gt=0)
    refresh_token: str = Field(min_length=1, repr=False)
    id_token: str | None = Field(default=None, repr=False)
    scope: str = ""

    @field_validator("token_type")
    @classmethod
    def validate_token_type(cls, v: str) -> str:
        # RFC 6749 Section 5.1: token_type is case insensitive
        if v.lower() != "bearer":
            raise ValueError(f"Unsupported token type: {v}")
        return "Bearer"

    @property
    def scopes(self) -> list[str]:
        return self.scope.split()


@dataclass(frozen=True)
class TokenExchangeRequest:
    """Authorization code grant parameters (RFC 6749 Section 4.1.3)."""

    token_endpoint: str
    client_id: str
    code: str = field(repr=False)
    redirect_uri: str
    code_verifier: str = field(repr=False)

    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        return {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
        }


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token grant parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    client_id: str
    refresh_token: str = field(repr=False)

    grant_type: str = "refresh_token"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "refresh_token": self.refresh_token,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


class TokenResponse(BaseModel):
    """Raw token endpoint response (RFC 6749 Section 5).

    Covers both successful responses (Section 5.1) and error responses
    (Section 5.2).
    """

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        if self.error_description:
            return f"{self.error}: {self.error_description}"
        return str(self.error)
