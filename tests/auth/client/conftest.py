import pytest

from cloudauth.auth.client.models.errors import AuthenticationError
from cloudauth.auth.client.models.flow import CallbackResult


class FakeKeychain:
    """In-memory keychain that counts calls."""

    def __init__(self):
        self.entries: dict[tuple[str, str], str] = {}
        self.get_calls = 0
        self.set_calls = 0
        self.delete_calls = 0
        self.available = True
        self.fail_with: AuthenticationError | None = None

    async def get(self, service: str, account: str) -> str | None:
        self.get_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.entries.get((service, account))

    async def set(self, service: str, account: str, secret: str) -> None:
        self.set_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.entries[(service, account)] = secret

    async def delete(self, service: str, account: str) -> bool:
        self.delete_calls += 1
        return self.entries.pop((service, account), None) is not None

    async def is_available(self) -> bool:
        return self.available


class FakeBrowser:
    """Records opened URLs into a shared event log."""

    def __init__(self, events: list[str], error: Exception | None = None):
        self.events = events
        self.error = error
        self.opened: list[str] = []

    async def open_url(self, url: str) -> None:
        self.events.append("browser")
        if self.error is not None:
            raise self.error
        self.opened.append(url)


class FakeListener:
    """Stands in for CallbackListener without binding a socket.

    ``on_wait`` decides the redirect outcome; it receives the listen options so
    it can echo the expected state.
    """

    def __init__(self, events: list[str], bound_redirect_uri: str | None = None):
        self.events = events
        self.bound_redirect_uri = bound_redirect_uri
        self.redirect_uri: str | None = None
        self.options = None
        self.listen_error: AuthenticationError | None = None
        self.on_wait = lambda options: CallbackResult(
            code="auth-code-123", state=options.expected_state
        )
        self.stop_calls = 0

    async def listen(self, options) -> None:
        self.events.append("listen")
        if self.listen_error is not None:
            raise self.listen_error
        self.options = options
        self.redirect_uri = self.bound_redirect_uri or options.redirect_uri

    async def wait_for_callback(self, options=None) -> CallbackResult:
        self.events.append("wait")
        outcome = self.on_wait(options or self.options)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def stop(self) -> None:
        self.events.append("stop")
        self.stop_calls += 1


@pytest.fixture
def events() -> list[str]:
    return []


@pytest.fixture
def keychain() -> FakeKeychain:
    return FakeKeychain()


@pytest.fixture
def browser(events) -> FakeBrowser:
    return FakeBrowser(events)


@pytest.fixture
def listener(events) -> FakeListener:
    return FakeListener(events)
