"""Tests for the browser hand-off (console URL and launchers)."""

import webbrowser
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

from clever_auth.oauth.flow import (
    CONSOLE_AUTH_PATH,
    DEFAULT_CONSOLE_HOST,
    ManualLauncher,
    WebBrowserLauncher,
    build_console_url,
)


class TestBuildConsoleUrl:
    """Tests for build_console_url."""

    def test_default_host(self):
        url = build_console_url(DEFAULT_CONSOLE_HOST, "1.2.3", "tok123")
        assert url == "https://console.clever-cloud.com/cli-oauth?cli_version=1.2.3&cli_token=tok123"

    def test_host_with_scheme(self):
        url = build_console_url("http://localhost:8080/", "1.0", "tok")
        assert url.startswith(f"http://localhost:8080{CONSOLE_AUTH_PATH}?")

    def test_parameters_encoded(self):
        """Test that query values round-trip through URL parsing."""
        url = build_console_url("console.example.com", "clever auth/1.0", "a-b_c")
        query = parse_qs(urlsplit(url).query)

        assert query == {"cli_version": ["clever auth/1.0"], "cli_token": ["a-b_c"]}

    def test_version_before_token(self):
        url = build_console_url("console.example.com", "1.0", "tok")
        assert url.index("cli_version=") < url.index("cli_token=")


class TestLaunchers:
    """Tests for browser launchers."""

    def test_web_browser_opened(self):
        with patch("clever_auth.oauth.flow.webbrowser.open", return_value=True) as mock_open:
            assert WebBrowserLauncher().open("https://example.com") is True
        mock_open.assert_called_once_with("https://example.com")

    def test_web_browser_unavailable(self):
        with patch("clever_auth.oauth.flow.webbrowser.open", return_value=False):
            assert WebBrowserLauncher().open("https://example.com") is False

    def test_web_browser_error(self):
        """Test that a browser error is reported as not opened."""
        with patch(
            "clever_auth.oauth.flow.webbrowser.open",
            side_effect=webbrowser.Error("no runnable browser"),
        ):
            assert WebBrowserLauncher().open("https://example.com") is False

    def test_manual_launcher(self):
        with patch("clever_auth.oauth.flow.webbrowser.open") as mock_open:
            assert ManualLauncher().open("https://example.com") is False
        mock_open.assert_not_called()
