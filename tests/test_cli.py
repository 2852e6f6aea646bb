"""Tests for CLI commands."""

import json
import logging
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from click.testing import CliRunner

from conftest import RecordingLauncher, credentials_response, json_response

from clever_auth.cli import _parse_params, main
from clever_auth.oauth import Authenticator, MemoryCredentialStore, OAuthCredentials


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def consumer_env(monkeypatch):
    """Consumer credentials and fast polling through the environment."""
    monkeypatch.setenv("CLEVER_CONSUMER_KEY", "ck")
    monkeypatch.setenv("CLEVER_CONSUMER_SECRET", "cs")
    monkeypatch.setenv("CLEVER_API_HOST", "https://api.example.com")
    monkeypatch.setenv("CLEVER_POLL_INTERVAL", "0.01")
    monkeypatch.setenv("CLEVER_POLL_MAX_ATTEMPTS", "3")


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def cli_authenticator(store, mock_http):
    """Make the CLI use an in-memory store and a mock HTTP client."""
    recorder = RecordingLauncher()

    def fake_get_authenticator(config, launcher=None, on_status=None):
        return Authenticator(
            config,
            store,
            launcher=recorder,
            http_client=mock_http,
            on_status=on_status,
        )

    with patch("clever_auth.cli.get_authenticator", side_effect=fake_get_authenticator):
        yield recorder


class TestMainGroup:
    """Tests for top-level options."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "auth" in result.output
        assert "sign" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output

    def test_invalid_config_json(self, runner, tmp_path, cli_authenticator):
        config_file = tmp_path / "clever-auth.json"
        config_file.write_text("{ invalid json }")

        result = runner.invoke(main, ["--config", str(config_file), "auth", "status"])

        assert result.exit_code == 1
        assert "invalid JSON" in result.output

    def test_invalid_config_value(self, runner, tmp_path, cli_authenticator):
        config_file = tmp_path / "clever-auth.json"
        config_file.write_text(json.dumps({"poll_interval": "soon"}))

        result = runner.invoke(main, ["--config", str(config_file), "auth", "status"])

        assert result.exit_code == 1
        assert "poll_interval" in result.output


class TestAuthLoginCommand:
    """Tests for the auth login command."""

    def test_login_success(self, runner, consumer_env, cli_authenticator, store, mock_http):
        mock_http.get.side_effect = [json_response(404), credentials_response("tk", "ts")]

        result = runner.invoke(main, ["auth", "login"])

        assert result.exit_code == 0, result.output
        assert "Logged in" in result.output
        assert store.load() == OAuthCredentials("tk", "ts")
        assert len(cli_authenticator.urls) == 1

    def test_login_json(self, runner, consumer_env, cli_authenticator, mock_http):
        mock_http.get.return_value = credentials_response()

        result = runner.invoke(main, ["--json", "auth", "login"])

        assert result.exit_code == 0
        assert '"status": "authenticated"' in result.output
        assert "Waiting for authorization" not in result.output

    def test_already_authenticated(self, runner, consumer_env, cli_authenticator, store, mock_http):
        """Test that stored credentials skip the browser flow."""
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(main, ["auth", "login"])

        assert result.exit_code == 0
        assert "Already authenticated" in result.output
        mock_http.get.assert_not_awaited()
        assert cli_authenticator.urls == []

    def test_force_login(self, runner, consumer_env, cli_authenticator, store, mock_http):
        store.save(OAuthCredentials("old-tk", "old-ts"))
        mock_http.get.return_value = credentials_response("new-tk", "new-ts")

        result = runner.invoke(main, ["auth", "login", "--force"])

        assert result.exit_code == 0
        assert store.load() == OAuthCredentials("new-tk", "new-ts")

    def test_login_timeout(self, runner, consumer_env, cli_authenticator, store):
        """Test that an unclaimed token exits with a retry hint."""
        result = runner.invoke(main, ["auth", "login"])

        assert result.exit_code == 1
        assert "timed out" in result.output
        assert "try again" in result.output
        assert store.load() is None

    def test_login_failure_json(self, runner, consumer_env, cli_authenticator, mock_http):
        mock_http.get.return_value = json_response(500, text="server error")

        result = runner.invoke(main, ["--json", "auth", "login"])

        assert result.exit_code == 1
        assert '"success": false' in result.output
        assert "AuthenticationFailed" in result.output

    def test_login_without_consumer(self, runner, cli_authenticator, mock_http):
        result = runner.invoke(main, ["auth", "login"])

        assert result.exit_code == 1
        assert "CLEVER_CONSUMER_KEY" in result.output
        mock_http.get.assert_not_awaited()


class TestAuthLogoutResetStatus:
    """Tests for logout, reset and status."""

    def test_logout(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(main, ["auth", "logout"])

        assert result.exit_code == 0
        assert "Logged out" in result.output
        assert store.load() is None

    def test_logout_nothing_stored(self, runner, consumer_env, cli_authenticator):
        result = runner.invoke(main, ["auth", "logout"])

        assert result.exit_code == 0
        assert "No stored credentials" in result.output

    def test_reset(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(main, ["auth", "reset"])

        assert result.exit_code == 0
        assert "reset" in result.output
        assert store.load() is None

    def test_status_json(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("token-value-123", "secret-value-456"))

        result = runner.invoke(main, ["--json", "auth", "status"])

        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["status"] == "authenticated"
        assert data["signing_mode"] == "oauth"
        assert "secret-value-456" not in result.output

    def test_status_human(self, runner, consumer_env, cli_authenticator):
        result = runner.invoke(main, ["auth", "status"])

        assert result.exit_code == 0
        assert "Authentication Status" in result.output
        assert "idle" in result.output


class TestSignCommand:
    """Tests for the sign command."""

    def test_sign_oauth(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(main, ["sign", "GET", "https://api.example.com/v2/self/"])

        assert result.exit_code == 0
        assert "Authorization: OAuth " in result.output
        assert 'oauth_consumer_key="ck"' in result.output
        assert 'oauth_signature_method="HMAC-SHA512"' in result.output

    def test_sign_json_with_params(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(
            main, ["--json", "sign", "get", "https://api.example.com/v2/self/", "-p", "limit=5"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["method"] == "GET"
        assert data["url"] == "https://api.example.com/v2/self?limit=5"
        assert data["authorization"].startswith("OAuth ")

    def test_sign_bearer(self, runner, consumer_env, cli_authenticator, monkeypatch):
        monkeypatch.setenv("CLEVER_API_TOKEN", "legacy-token")

        result = runner.invoke(main, ["sign", "GET", "https://api.example.com/v2/self"])

        assert result.exit_code == 0
        assert "Authorization: Bearer legacy-token" in result.output

    def test_sign_without_credentials(self, runner, consumer_env, cli_authenticator):
        result = runner.invoke(main, ["sign", "GET", "https://api.example.com/v2/self"])

        assert result.exit_code == 1
        assert "No credentials configured" in result.output

    def test_sign_invalid_url(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        result = runner.invoke(main, ["sign", "GET", "not-a-url"])

        assert result.exit_code == 1

    def test_sign_bad_param(self, runner, consumer_env, cli_authenticator):
        result = runner.invoke(main, ["sign", "GET", "https://api.example.com/v2/self", "-p", "novalue"])
        assert result.exit_code == 2


class TestRequestCommand:
    """Tests for the request command."""

    def test_request(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        with patch(
            "httpx.AsyncClient.request",
            new=AsyncMock(return_value=json_response(200, {"id": "user_1"})),
        ) as mock_request:
            result = runner.invoke(main, ["--json", "request", "GET", "/self"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)["data"]
        assert data == {"status_code": 200, "body": {"id": "user_1"}}
        args = mock_request.await_args.args
        assert args[-1] == "https://api.example.com/v2/self"

    def test_request_unauthorized(self, runner, consumer_env, cli_authenticator, store):
        store.save(OAuthCredentials("tk", "ts"))

        with patch(
            "httpx.AsyncClient.request",
            new=AsyncMock(return_value=json_response(401, text="Unauthorized")),
        ):
            result = runner.invoke(main, ["request", "GET", "/self"])

        assert result.exit_code == 1
        assert "HTTP error 401" in result.output
        assert "revoked" in result.output

    def test_request_network_error(self, runner, consumer_env, cli_authenticator, store, caplog):
        """Test that transport errors are reported and logged."""
        store.save(OAuthCredentials("tk", "ts"))

        with caplog.at_level(logging.DEBUG, logger="clever-auth"):
            with patch(
                "httpx.AsyncClient.request",
                new=AsyncMock(side_effect=httpx.ConnectError("connection refused")),
            ):
                result = runner.invoke(main, ["--json", "request", "GET", "/self"])

        assert result.exit_code == 1
        assert "NetworkError" in result.output
        assert "ConnectError: connection refused" in caplog.text

    def test_request_without_credentials(self, runner, consumer_env, cli_authenticator):
        with patch("httpx.AsyncClient.request", new=AsyncMock()) as mock_request:
            result = runner.invoke(main, ["request", "GET", "/self"])

        assert result.exit_code == 1
        mock_request.assert_not_awaited()


class TestParseParams:
    """Tests for _parse_params."""

    def test_parses_pairs(self):
        assert _parse_params(("a=1", "b=x=y")) == {"a": "1", "b": "x=y"}

    def test_empty_value(self):
        assert _parse_params(("a=",)) == {"a": ""}
