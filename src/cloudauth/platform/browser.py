"""System browser launching."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Protocol

from cloudauth.auth.client.models.errors import AuthenticationError, AuthErrorKind

logger = logging.getLogger(__name__)


class BrowserLauncher(Protocol):
    async def open_url(self, url: str) -> None:
        """Open ``url`` in the user's browser.

        Raises:
            AuthenticationError: BROWSER_FAILED if no browser could be opened
        """
        ...


class WebBrowserLauncher:
    """BrowserLauncher using the standard ``webbrowser`` module."""

    async def open_url(self, url: str) -> None:
        try:
            opened = await asyncio.to_thread(webbrowser.open, url, 2)
        except webbrowser.Error as e:
            raise AuthenticationError(
                AuthErrorKind.BROWSER_FAILED,
                "Failed to open browser. Please open the authorization URL manually.",
            ) from e

        if not opened:
            raise AuthenticationError(
                AuthErrorKind.BROWSER_FAILED,
                "No browser available. Please open the authorization URL manually.",
            )
        logger.debug("Opened authorization URL in the system browser")
