"""Persisted authentication session models.

A session is stored as one camelCase JSON blob in the OS keychain. Loading a
blob goes through ``AuthenticationSession.model_validate_json`` so any shape
problem surfaces as a single ``ValidationError``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Self

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from cloudauth.auth.client.models.tokens import TokenSet

# Stored timestamps are serialized to microsecond precision
_EXPIRY_TOLERANCE = timedelta(seconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class UserProfile(_CamelModel):
    id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email_verified: bool | None = None
    organization: str | None = None
    picture: str | None = None


class SessionMetadata(_CamelModel):
    created_at: AwareDatetime
    last_refreshed_at: AwareDatetime | None = None
    expires_at: AwareDatetime
    scopes: list[str] = Field(default_factory=list)

    @property
    def issued_at(self) -> datetime:
        """When the current access token was obtained."""
        return self.last_refreshed_at or self.created_at


class AuthenticationSession(_CamelModel):
    """The single active login for this machine."""

    version: Literal[1] = 1
    user: UserProfile
    tokens: TokenSet
    metadata: SessionMetadata

    @model_validator(mode="after")
    def check_expiry(self) -> Self:
        expected = self.metadata.issued_at + timedelta(seconds=self.tokens.expires_in)
        if abs(self.metadata.expires_at - expected) > _EXPIRY_TOLERANCE:
            raise ValueError("expiresAt does not match the token lifetime")
        return self

    @classmethod
    def create(
        cls, user: UserProfile, tokens: TokenSet, now: datetime | None = None
    ) -> AuthenticationSession:
        """Build a session for freshly issued tokens."""
        now = now or utcnow()
        return cls(
            user=user,
            tokens=tokens,
            metadata=SessionMetadata(
                created_at=now,
                expires_at=now + timedelta(seconds=tokens.expires_in),
                scopes=tokens.scopes,
            ),
        )

    def refreshed(
        self, tokens: TokenSet, now: datetime | None = None
    ) -> AuthenticationSession:
        """Return this session with refreshed tokens and a new expiry."""
        now = now or utcnow()
        metadata = self.metadata.model_copy(
            update={
                "last_refreshed_at": now,
                "expires_at": now + timedelta(seconds=tokens.expires_in),
                "scopes": tokens.scopes or self.metadata.scopes,
            }
        )
        return self.model_copy(update={"tokens": tokens, "metadata": metadata})

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def is_session_expired(
    session: AuthenticationSession,
    buffer: float = 0.0,
    now: datetime | None = None,
) -> bool:
    """True when the session expires within ``buffer`` seconds.

    A session that is about to expire counts as expired so callers refresh
    proactively instead of racing the expiry.
    """
    now = now or utcnow()
    return now + timedelta(seconds=buffer) >= session.metadata.expires_at
