"""Timeouts, buffers and limits shared by the authentication flow."""

# Maximum time to wait for the user to finish in the browser
CALLBACK_TIMEOUT_SECONDS = 5 * 60

HTTP_TIMEOUT_SECONDS = 30.0

# Refresh access tokens this long before they expire
REFRESH_BUFFER_SECONDS = 5 * 60

# Upper bound on ports tried when a port range is configured
MAX_PORT_RANGE_SIZE = 100

MAX_AUTH_CODE_LENGTH = 2048
MAX_STATE_LENGTH = 2048

DEFAULT_VERIFIER_BYTES = 32
DEFAULT_STATE_BYTES = 32
MIN_STATE_BYTES = 16

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})

KEYCHAIN_SERVICE = "cloudauth-cli"
KEYCHAIN_ACCOUNT = "default"
