"""Browser hand-off for CLI token authentication.

The user grants access in the web console. The console page is opened
with a locally generated CLI token, and the API later hands out OAuth
credentials to whoever presents that token (see polling.py). No redirect
URI or local callback server is involved.
"""

import logging
import webbrowser
from abc import ABC, abstractmethod
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

DEFAULT_CONSOLE_HOST = "console.clever-cloud.com"
CONSOLE_AUTH_PATH = "/cli-oauth"


def build_console_url(console_host: str, client_version: str, cli_token: str) -> str:
    """Build the console URL the user opens to approve the CLI token.

    Args:
        console_host: Console host ("console.clever-cloud.com") or base URL
            ("https://console.clever-cloud.com")
        client_version: Version string reported to the console
        cli_token: The CLI token for this session

    Returns:
        https://<console-host>/cli-oauth?cli_version=...&cli_token=...
    """
    base = console_host.rstrip("/")
    if "://" not in base:
        base = f"https://{base}"

    params = {
        "cli_version": client_version,
        "cli_token": cli_token,
    }
    return f"{base}{CONSOLE_AUTH_PATH}?{urlencode(params)}"


class BrowserLauncher(ABC):
    """Opens the console URL in a user agent.

    The authenticator does not control the browser UI. Launchers that can
    tell when the page is closed should call
    Authenticator.on_browser_dismissed().
    """

    @abstractmethod
    def open(self, url: str) -> bool:
        """Open the URL. Returns False if no browser could be opened."""


class WebBrowserLauncher(BrowserLauncher):
    """Opens the URL with the system default browser."""

    def open(self, url: str) -> bool:
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open browser: {e}")
            return False
        if not opened:
            logger.warning("No browser available to open the console URL")
        return opened


class ManualLauncher(BrowserLauncher):
    """Never opens a browser; the user opens the printed URL themselves."""

    def open(self, url: str) -> bool:
        logger.debug("Browser launch disabled, URL must be opened manually")
        return False
