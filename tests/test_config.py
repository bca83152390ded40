import pytest
from pydantic import ValidationError

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.config import OAuthConfig

ENV_VARS = (
    "CLOUDAUTH_CLIENT_ID",
    "CLOUDAUTH_BASE_URL",
    "CLOUDAUTH_REDIRECT_URI",
    "CLOUDAUTH_SCOPES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # Record every variable so anything loaded from .env is undone afterwards
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestOAuthConfig:
    def test_defaults(self):
        # Act
        config = OAuthConfig()

        # Assert
        assert config.base_url == "https://app.uxlint.org"
        assert config.endpoints.authorize_path == "/auth/v1/oauth/authorize"
        assert config.endpoints.token_path == "/auth/v1/oauth/token"
        assert config.redirect_uri == "http://localhost:8080/callback"
        assert config.scopes == ["openid", "profile", "email", "uxlint:api"]
        assert config.callback_timeout == 300
        assert config.http_timeout == 30.0
        assert config.refresh_buffer == 300
        assert config.port_range is None
        assert config.keychain_service == "cloudauth-cli"
        assert config.keychain_account == "default"

    def test_from_env(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("CLOUDAUTH_CLIENT_ID", "client-456")
        monkeypatch.setenv("CLOUDAUTH_BASE_URL", "https://auth.example.com/")
        monkeypatch.setenv("CLOUDAUTH_REDIRECT_URI", "http://127.0.0.1:9000/cb")
        monkeypatch.setenv("CLOUDAUTH_SCOPES", "openid  email")

        # Act
        config = OAuthConfig.from_env(dotenv=False)

        # Assert
        assert config.client_id == "client-456"
        assert config.base_url == "https://auth.example.com"
        assert config.redirect_uri == "http://127.0.0.1:9000/cb"
        assert config.scopes == ["openid", "email"]

    def test_overrides_win_over_env(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("CLOUDAUTH_CLIENT_ID", "from-env")

        # Act
        config = OAuthConfig.from_env(dotenv=False, client_id="explicit")

        # Assert
        assert config.client_id == "explicit"

    def test_from_dotenv_file(self, tmp_path, monkeypatch):
        # Arrange
        (tmp_path / ".env").write_text("CLOUDAUTH_CLIENT_ID=from-dotenv\n")
        monkeypatch.chdir(tmp_path)

        # Act
        config = OAuthConfig.from_env()

        # Assert
        assert config.client_id == "from-dotenv"

    def test_environment_wins_over_dotenv_file(self, tmp_path, monkeypatch):
        # Arrange
        (tmp_path / ".env").write_text("CLOUDAUTH_CLIENT_ID=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CLOUDAUTH_CLIENT_ID", "from-env")

        # Act
        config = OAuthConfig.from_env()

        # Assert
        assert config.client_id == "from-env"

    def test_require_client_id(self):
        with pytest.raises(AuthenticationError) as exc_info:
            OAuthConfig().require_client_id()

        assert exc_info.value.kind is AuthErrorKind.INVALID_CONFIG
        assert "CLOUDAUTH_CLIENT_ID" in exc_info.value.message

    def test_require_client_id_present(self):
        assert OAuthConfig(client_id="client-456").require_client_id() == "client-456"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("base_url", "ftp://auth.example.com"),
            ("callback_timeout", 0),
            ("state_bytes", 8),
            ("max_port_span", 0),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            OAuthConfig(**{field: value})
