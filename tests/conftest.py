"""Shared fixtures and utilities for clever-auth tests."""

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from clever_auth.config import Config
from clever_auth.oauth import (
    BrowserLauncher,
    ConsumerCredentials,
    MemoryCredentialStore,
    OAuthCredentials,
)


# ============================================================================
# Signing Fixture Values
# ============================================================================

# Computed independently for GET https://api.example.com/v2/self with
# consumer ck/cs, token tk/ts, timestamp 1700000000 and NONCE below
TIMESTAMP = 1700000000
NONCE = "abcdef0123456789abcdef012345678"
EXPECTED_BASE_STRING = (
    "GET&https%3A%2F%2Fapi.example.com%2Fv2%2Fself&"
    "oauth_consumer_key%3Dck%26oauth_nonce%3Dabcdef0123456789abcdef012345678%26"
    "oauth_signature_method%3DHMAC-SHA512%26oauth_timestamp%3D1700000000%26"
    "oauth_token%3Dtk%26oauth_version%3D1.0"
)
EXPECTED_SIGNATURE = (
    "bmH5dZpDib87nvUiV5nrI3wFeqrspdpYFp9Jc3sDxAd54Lly/sfNfoLBrmA4obMo+Va2O7KEW0wrW6aR/ZnWwA=="
)
EXPECTED_HEADER = (
    'OAuth oauth_consumer_key="ck", '
    'oauth_nonce="abcdef0123456789abcdef012345678", '
    'oauth_signature="bmH5dZpDib87nvUiV5nrI3wFeqrspdpYFp9Jc3sDxAd54Lly%2FsfNfoLBrmA4obMo'
    '%2BVa2O7KEW0wrW6aR%2FZnWwA%3D%3D", '
    'oauth_signature_method="HMAC-SHA512", '
    'oauth_timestamp="1700000000", '
    'oauth_token="tk", '
    'oauth_version="1.0"'
)


# ============================================================================
# Credential Fixtures
# ============================================================================


@pytest.fixture
def consumer() -> ConsumerCredentials:
    """Consumer credentials used by every signing test."""
    return ConsumerCredentials(consumer_key="ck", consumer_secret="cs")


@pytest.fixture
def oauth_credentials() -> OAuthCredentials:
    """A valid user token/secret pair."""
    return OAuthCredentials(token="tk", secret="ts")


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    """An empty in-memory credential store."""
    return MemoryCredentialStore()


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    """Config with consumer credentials and fast polling."""
    return Config(
        consumer_key="ck",
        consumer_secret="cs",
        api_host="https://api.example.com",
        console_host="console.example.com",
        client_version="test-1.0",
        poll_interval=0.01,
        max_poll_attempts=5,
        request_timeout=1.0,
        store_dir=tmp_path / "store",
    )


# ============================================================================
# HTTP and Browser Fixtures
# ============================================================================


class RecordingLauncher(BrowserLauncher):
    """Launcher that records the URLs it was asked to open."""

    def __init__(self, result: bool = True):
        self.result = result
        self.urls: list[str] = []

    def open(self, url: str) -> bool:
        self.urls.append(url)
        return self.result


@pytest.fixture
def launcher() -> RecordingLauncher:
    """A launcher that pretends the browser opened."""
    return RecordingLauncher()


def json_response(status_code: int, data: Any = None, text: str | None = None) -> httpx.Response:
    """Build an httpx response with a JSON or plain text body."""
    if text is not None:
        return httpx.Response(status_code, text=text)
    if data is not None:
        return httpx.Response(status_code, json=data)
    return httpx.Response(status_code)


def credentials_response(token: str = "issued-token", secret: str = "issued-secret") -> httpx.Response:
    """A successful token exchange response."""
    return json_response(200, {"token": token, "secret": secret})


@pytest.fixture
def mock_http() -> MagicMock:
    """Mock AsyncClient whose exchange endpoint answers 404 (not claimed yet)."""
    http = MagicMock(spec=httpx.AsyncClient)
    http.get = AsyncMock(return_value=json_response(404))
    http.request = AsyncMock(return_value=json_response(200, {}))
    http.aclose = AsyncMock()
    return http


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Remove CLEVER_* variables for the duration of each test.

    The original environment is restored afterwards, including anything a
    .env file loaded during the test.
    """
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("CLEVER_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)


@pytest.fixture(autouse=True)
def isolated_search_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config and .env discovery at an empty directory."""
    search_dir = tmp_path / "search"
    search_dir.mkdir()
    monkeypatch.setattr("clever_auth.config.CONFIG_SEARCH_DIRS", [search_dir])
    monkeypatch.setattr("clever_auth.config.ENV_SEARCH_PATHS", [search_dir / ".env"])
    return search_dir
