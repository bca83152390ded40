"""OpenID Connect discovery document model."""

from __future__ import annotations

from pydantic import BaseModel, Field


class OpenIDConfiguration(BaseModel):
    """OpenID Provider Metadata (OIDC Discovery 1.0, Section 3).

    Only the fields this client reads are required.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str

    userinfo_endpoint: str | None = None
    response_types_supported: list[str] = Field(default_factory=list)
    grant_types_supported: list[str] = Field(default_factory=list)
    scopes_supported: list[str] = Field(default_factory=list)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)
    id_token_signing_alg_values_supported: list[str] = Field(
        default_factory=lambda: ["RS256"]
    )

    def supports_s256(self) -> bool:
        # Servers that omit the field are assumed to support S256
        return (
            not self.code_challenge_methods_supported
            or "S256" in self.code_challenge_methods_supported
        )
