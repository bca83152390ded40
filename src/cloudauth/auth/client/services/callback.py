"""Loopback callback listener for the authorization redirect.

Binds an HTTP server on 127.0.0.1, waits for the authorization server to
redirect the browser back with a code (or an error) and hands the parsed
result to the caller.
"""

from __future__ import annotations

import asyncio
import html
import logging
import socket
import sys
from dataclasses import dataclass, field

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from cloudauth.auth.client.models.errors import (
    AuthenticationError,
    AuthErrorKind,
    StateMismatchError,
)
from cloudauth.auth.client.models.flow import (
    CallbackErr,
    CallbackParseResult,
    CallbackResult,
)
from cloudauth.auth.client.primitives.callback import (
    candidate_ports,
    check_state,
    parse_callback_params,
    parse_loopback_redirect,
)
from cloudauth.auth.constants import CALLBACK_TIMEOUT_SECONDS, MAX_PORT_RANGE_SIZE

logger = logging.getLogger(__name__)

_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; margin-top: 4em">
<h1>{title}</h1><p>{message}</p>
</body></html>
"""


def render_page(outcome: CallbackParseResult) -> tuple[str, int]:
    """Render the page shown in the browser after the redirect."""
    if isinstance(outcome, CallbackErr):
        return (
            _PAGE.format(
                title="Authentication failed",
                message=html.escape(outcome.error.message),
            ),
            400,
        )
    if outcome.result.is_error():
        return (
            _PAGE.format(
                title="Authentication was not completed",
                message=html.escape(
                    outcome.result.error_description or outcome.result.error or ""
                ),
            ),
            200,
        )
    return (
        _PAGE.format(
            title="Authentication successful",
            message="You can close this window and return to the terminal.",
        ),
        200,
    )


@dataclass(frozen=True)
class CallbackListenerOptions:
    redirect_uri: str
    expected_state: str = field(repr=False)
    timeout: float = CALLBACK_TIMEOUT_SECONDS
    port_range: tuple[int, int] | None = None


class CallbackListener:
    """Ephemeral loopback HTTP listener for one authorization attempt.

    Usage is ``listen()`` (returns once the socket is bound and serving), then
    ``wait_for_callback()``, then ``stop()``. ``stop()`` is idempotent and
    safe to call at any point.

    Only 127.0.0.1 is ever bound. Redirect URIs with any host other than
    ``localhost`` or ``127.0.0.1`` are rejected before binding.
    """

    def __init__(
        self,
        max_port_span: int = MAX_PORT_RANGE_SIZE,
        shutdown_timeout: float = 2.0,
    ) -> None:
        """Initialize the listener.

        Args:
            max_port_span: Maximum number of ports tried from a port range
            shutdown_timeout: Seconds uvicorn may spend finishing in-flight
                responses on stop
        """
        self.max_port_span = max_port_span
        self.shutdown_timeout = shutdown_timeout

        self.attempted_ports: list[int] = []
        self.port: int | None = None
        self.redirect_uri: str | None = None

        self._options: CallbackListenerOptions | None = None
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._outcome: asyncio.Future[CallbackParseResult] | None = None
        self._waiting = False

    @property
    def is_listening(self) -> bool:
        return self._server is not None and self._server.started

    async def listen(self, options: CallbackListenerOptions) -> None:
        """Bind the loopback socket and start serving.

        Returns only once the server is accepting connections, so the browser
        can be launched right after.

        Args:
            options: Redirect URI, expected state, timeout and port range

        Raises:
            AuthenticationError: INVALID_CONFIG for a non-loopback redirect URI
                or a bad port range, NETWORK_ERROR if no port could be bound
        """
        if self._server is not None:
            raise AuthenticationError(
                AuthErrorKind.INVALID_CONFIG, "Callback listener is already running"
            )

        redirect = parse_loopback_redirect(options.redirect_uri)
        ports = candidate_ports(redirect.port, options.port_range, self.max_port_span)

        self._socket = self._bind_first_available(redirect.bind_host, ports)
        self.port = self._socket.getsockname()[1]
        self.redirect_uri = redirect.with_port(self.port)
        self._options = options
        self._outcome = asyncio.get_running_loop().create_future()

        app = Starlette(
            routes=[Route(redirect.path, self._handle_callback, methods=["GET"])]
        )
        config = uvicorn.Config(
            app=app,
            host=redirect.bind_host,
            port=self.port,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=self.shutdown_timeout,
        )
        self._server = uvicorn.Server(config)

        # Start server in background task
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[self._socket])
        )
        self._serve_task.add_done_callback(self._on_server_exit)

        await self._wait_until_started()
        logger.info(f"Callback listener ready on {self.redirect_uri}")

    async def wait_for_callback(
        self, options: CallbackListenerOptions | None = None
    ) -> CallbackResult:
        """Wait for the authorization redirect.

        Starts listening first when ``listen()`` has not been called.

        Args:
            options: Listener options; required only if not yet listening

        Returns:
            CallbackResult: A redirect carrying a code, or an OAuth error

        Raises:
            StateMismatchError: If the redirect's state does not match
            AuthenticationError: NETWORK_ERROR on timeout or when the listener
                is stopped while waiting, INVALID_RESPONSE for a rejected
                redirect
        """
        if self._server is None:
            if options is None:
                raise AuthenticationError(
                    AuthErrorKind.INVALID_CONFIG,
                    "Callback listener is not running",
                )
            await self.listen(options)

        assert self._outcome is not None and self._options is not None
        timeout = (options or self._options).timeout

        self._waiting = True
        try:
            async with asyncio.timeout(timeout):
                outcome = await asyncio.shield(self._outcome)
        except TimeoutError:
            raise AuthenticationError(
                AuthErrorKind.NETWORK_ERROR,
                f"Timed out after {timeout:g}s waiting for the authorization callback",
                {"reason": "timeout"},
            ) from None
        finally:
            self._waiting = False

        if isinstance(outcome, CallbackErr):
            raise outcome.error

        logger.debug("Authorization callback received")
        return outcome.result

    async def stop(self) -> None:
        """Stop the server and release the socket.

        Safe to call when never started, already stopped or already resolved.
        """
        self._abandon("Callback listener stopped before a redirect arrived")

        server, task, sock = self._server, self._serve_task, self._socket
        self._server = None
        self._serve_task = None
        self._socket = None

        if server is not None:
            server.should_exit = True
        if task is not None:
            try:
                await task
            except Exception as e:
                logger.warning(f"Callback listener exited with error: {e}")
        if server is not None:
            # uvicorn skips its shutdown when told to exit during startup
            for srv in getattr(server, "servers", []):
                srv.close()
        if sock is not None:
            sock.close()
            logger.debug(f"Callback listener on port {self.port} stopped")

    def _bind_first_available(self, host: str, ports: list[int]) -> socket.socket:
        """Bind the first free port from an explicitly capped list."""
        self.attempted_ports = []
        last_error: OSError | None = None

        for port in ports:
            self.attempted_ports.append(port)
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                if sys.platform != "win32":
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((host, port))
                sock.listen(16)
            except OSError as e:
                sock.close()
                last_error = e
                logger.debug(f"Callback port {port} unavailable: {e}")
                continue

            sock.setblocking(False)
            return sock

        raise AuthenticationError(
            AuthErrorKind.NETWORK_ERROR,
            f"Could not bind callback listener on {host}, "
            f"tried {len(self.attempted_ports)} port(s)",
            {"attempted_ports": list(self.attempted_ports)},
        ) from last_error

    async def _wait_until_started(self) -> None:
        assert self._server is not None and self._serve_task is not None
        while not self._server.started:
            if self._serve_task.done():
                error = (
                    None
                    if self._serve_task.cancelled()
                    else self._serve_task.exception()
                )
                await self.stop()
                raise AuthenticationError(
                    AuthErrorKind.NETWORK_ERROR,
                    "Callback listener failed to start",
                ) from error
            await asyncio.sleep(0.01)

    async def _handle_callback(self, request: Request) -> Response:
        """Handle the redirect request from the browser."""
        outcome = parse_callback_params(request.query_params)

        if isinstance(outcome, CallbackErr):
            # Not a usable redirect; keep waiting for a well-formed one
            logger.warning(f"Rejected malformed callback: {outcome.error.message}")
            page, status = render_page(outcome)
            return HTMLResponse(page, status_code=status)

        if self._options is not None:
            try:
                check_state(outcome.result, self._options.expected_state)
            except StateMismatchError as e:
                logger.warning(f"Callback rejected: {e.message}")
                outcome = CallbackErr(e)

        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(outcome)
        else:
            logger.debug("Ignoring callback received after the flow completed")

        page, status = render_page(outcome)
        return HTMLResponse(page, status_code=status)

    def _on_server_exit(self, task: asyncio.Task[None]) -> None:
        self._abandon("Callback listener exited unexpectedly")

    def _abandon(self, message: str) -> None:
        """Fail a pending wait, or discard the unused outcome."""
        if self._outcome is None or self._outcome.done():
            return
        if self._waiting:
            self._outcome.set_exception(
                AuthenticationError(
                    AuthErrorKind.NETWORK_ERROR, message, {"reason": "cancelled"}
                )
            )
        else:
            self._outcome.cancel()
