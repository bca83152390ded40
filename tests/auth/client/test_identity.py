import json
import logging
import time
from unittest.mock import AsyncMock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from cloudauth.auth.client.models.discovery import OpenIDConfiguration
from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.auth.client.models.tokens import TokenSet
from cloudauth.auth.client.services.identity import IdentityResolver

ISSUER = "https://auth.example.com"
CLIENT_ID = "client-456"


def generate_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def jwks_for(private_key, kid: str = "key-1") -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


def sign(private_key, kid: str = "key-1", **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-123",
        "email": "dev@example.com",
        "email_verified": True,
        "name": "Dev Example",
        "org": "Example Org",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})


def tokens_with(id_token: str | None) -> TokenSet:
    return TokenSet(
        access_token="access-token",
        expires_in=3600,
        refresh_token="refresh-token",
        id_token=id_token,
    )


class TestIdentityResolver:
    @classmethod
    def setup_class(cls):
        cls.private_key = generate_key()

    def setup_method(self):
        # Arrange
        self.token_client = AsyncMock()
        self.token_client.get_openid_configuration.return_value = OpenIDConfiguration(
            issuer=ISSUER,
            authorization_endpoint=f"{ISSUER}/auth/v1/oauth/authorize",
            token_endpoint=f"{ISSUER}/auth/v1/oauth/token",
            jwks_uri=f"{ISSUER}/.well-known/jwks.json",
        )
        self.token_client.fetch_jwks.return_value = jwks_for(self.private_key)
        self.resolver = IdentityResolver(
            self.token_client, client_id=CLIENT_ID, base_url=ISSUER
        )

    async def test_verified_profile(self):
        # Act
        profile = await self.resolver.resolve(tokens_with(sign(self.private_key)))

        # Assert
        assert profile.id == "user-123"
        assert profile.email == "dev@example.com"
        assert profile.name == "Dev Example"
        assert profile.email_verified is True
        assert profile.organization == "Example Org"
        self.token_client.fetch_jwks.assert_awaited_once_with(
            f"{ISSUER}/.well-known/jwks.json"
        )

    async def test_no_id_token_gives_placeholder(self):
        # Act
        profile = await self.resolver.resolve(tokens_with(None))

        # Assert
        assert profile.id == "unknown"
        assert profile.email == "unknown@auth.example.com"
        assert profile.name == "CLI User"
        self.token_client.get_openid_configuration.assert_not_awaited()

    async def test_wrong_signing_key(self):
        # Arrange
        token = sign(generate_key())

        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await self.resolver.resolve(tokens_with(token))
        assert exc_info.value.kind is AuthErrorKind.INVALID_RESPONSE

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "someone-else"},
            {"iss": "https://evil.example.com"},
            {"exp": int(time.time()) - 3600},
            {"sub": None},
        ],
    )
    async def test_rejected_claims(self, overrides):
        # Arrange
        token = sign(self.private_key, **overrides)

        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await self.resolver.resolve(tokens_with(token))
        assert exc_info.value.kind is AuthErrorKind.INVALID_RESPONSE

    async def test_unknown_key_id(self):
        # Arrange
        token = sign(self.private_key, kid="rotated-away")

        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await self.resolver.resolve(tokens_with(token))
        assert "rotated-away" in exc_info.value.message

    async def test_discovery_unavailable_reads_claims_unverified(self):
        # Arrange
        self.token_client.get_openid_configuration.side_effect = AuthenticationError(
            AuthErrorKind.NETWORK_ERROR, "Failed to fetch OpenID configuration"
        )
        token = sign(generate_key())

        # Act
        profile = await self.resolver.resolve(tokens_with(token))

        # Assert
        assert profile.id == "user-123"
        self.token_client.fetch_jwks.assert_not_awaited()

    async def test_jwks_unavailable_reads_claims_unverified(self):
        # Arrange
        self.token_client.fetch_jwks.side_effect = AuthenticationError(
            AuthErrorKind.NETWORK_ERROR, "Failed to fetch JWKS"
        )

        # Act
        profile = await self.resolver.resolve(tokens_with(sign(self.private_key)))

        # Assert
        assert profile.email == "dev@example.com"

    async def test_missing_optional_claims(self):
        # Arrange
        token = sign(self.private_key, email=None, name=None, org=None, email_verified=None)

        # Act
        profile = await self.resolver.resolve(tokens_with(token))

        # Assert
        assert profile.email == "unknown@auth.example.com"
        assert profile.name == "CLI User"
        assert profile.organization is None
        assert profile.email_verified is None

    async def test_not_a_jwt(self):
        with pytest.raises(AuthenticationError) as exc_info:
            await self.resolver.resolve(tokens_with("not-a-jwt"))
        assert exc_info.value.kind is AuthErrorKind.INVALID_RESPONSE

    async def test_warns_when_s256_not_advertised(self, caplog):
        # Arrange
        config = self.token_client.get_openid_configuration.return_value
        self.token_client.get_openid_configuration.return_value = config.model_copy(
            update={"code_challenge_methods_supported": ["plain"]}
        )

        # Act
        with caplog.at_level(logging.WARNING):
            profile = await self.resolver.resolve(tokens_with(sign(self.private_key)))

        # Assert
        assert profile.id == "user-123"
        assert "does not advertise S256" in caplog.text

    async def test_no_warning_when_s256_advertised(self, caplog):
        # Arrange
        config = self.token_client.get_openid_configuration.return_value
        self.token_client.get_openid_configuration.return_value = config.model_copy(
            update={"code_challenge_methods_supported": ["S256"]}
        )

        # Act
        with caplog.at_level(logging.WARNING):
            await self.resolver.resolve(tokens_with(sign(self.private_key)))

        # Assert
        assert "S256" not in caplog.text
