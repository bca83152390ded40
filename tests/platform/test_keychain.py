import keyring
import keyring.errors
import pytest
from keyring.backends import fail

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind
from cloudauth.platform.keychain import KeyringKeychainStore


class TestKeyringKeychainStore:
    @pytest.fixture(autouse=True)
    def fake_keyring(self, monkeypatch):
        self.store: dict[tuple[str, str], str] = {}

        def get_password(service, account):
            return self.store.get((service, account))

        def set_password(service, account, secret):
            self.store[(service, account)] = secret

        def delete_password(service, account):
            if (service, account) not in self.store:
                raise keyring.errors.PasswordDeleteError("not found")
            del self.store[(service, account)]

        monkeypatch.setattr(keyring, "get_password", get_password)
        monkeypatch.setattr(keyring, "set_password", set_password)
        monkeypatch.setattr(keyring, "delete_password", delete_password)
        self.keychain = KeyringKeychainStore()

    async def test_set_then_get(self):
        # Act
        await self.keychain.set("cloudauth-cli", "default", '{"version": 1}')

        # Assert
        assert await self.keychain.get("cloudauth-cli", "default") == '{"version": 1}'

    async def test_get_missing(self):
        assert await self.keychain.get("cloudauth-cli", "default") is None

    async def test_delete(self):
        # Arrange
        await self.keychain.set("cloudauth-cli", "default", "secret")

        # Act & Assert
        assert await self.keychain.delete("cloudauth-cli", "default") is True
        assert await self.keychain.delete("cloudauth-cli", "default") is False

    async def test_backend_failure_is_keychain_error(self, monkeypatch):
        # Arrange
        def locked(service, account):
            raise keyring.errors.KeyringLocked("Keychain is locked")

        monkeypatch.setattr(keyring, "get_password", locked)

        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await self.keychain.get("cloudauth-cli", "default")
        assert exc_info.value.kind is AuthErrorKind.KEYCHAIN_ERROR
        assert isinstance(exc_info.value.cause, keyring.errors.KeyringLocked)

    async def test_set_failure_is_keychain_error(self, monkeypatch):
        # Arrange
        def refuse(service, account, secret):
            raise keyring.errors.PasswordSetError("denied")

        monkeypatch.setattr(keyring, "set_password", refuse)

        # Act & Assert
        with pytest.raises(AuthenticationError) as exc_info:
            await self.keychain.set("cloudauth-cli", "default", "secret")
        assert exc_info.value.kind is AuthErrorKind.KEYCHAIN_ERROR

    async def test_unavailable_backend(self, monkeypatch):
        # Arrange
        monkeypatch.setattr(keyring, "get_keyring", lambda: fail.Keyring())

        # Act & Assert
        assert await self.keychain.is_available() is False

    async def test_available_backend(self, monkeypatch):
        # Arrange
        monkeypatch.setattr(keyring, "get_keyring", lambda: object())

        # Act & Assert
        assert await self.keychain.is_available() is True
