"""Credential data structures.

This module provides the credential types used by the signer and the
authenticator:

- OAuthCredentials: the user-scoped token/secret pair issued by the API
- ConsumerCredentials: the application-identifying key/secret pair
- BearerToken: a legacy static API token
- CLIAuthSession: one in-flight browser hand-off attempt
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def mask_secret(value: str, visible: int = 6) -> str:
    """Show only the first few characters of a secret for logging."""
    if not value:
        return "<empty>"
    return f"{value[:visible]}..."


@dataclass(frozen=True)
class OAuthCredentials:
    """OAuth 1.0a access credentials.

    Attributes:
        token: The access token (sent as oauth_token)
        secret: The token secret (half of the signing key, never sent)
    """

    token: str
    secret: str

    def is_valid(self) -> bool:
        """Check that both halves of the pair are present."""
        return bool(self.token) and bool(self.secret)

    def to_dict(self) -> dict[str, str]:
        """Serialize to dictionary for storage."""
        return {"token": self.token, "secret": self.secret}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthCredentials":
        """Deserialize from dictionary.

        Raises:
            KeyError: If a field is missing
            TypeError: If a field is not a string
        """
        token = data["token"]
        secret = data["secret"]
        if not isinstance(token, str) or not isinstance(secret, str):
            raise TypeError("token and secret must be strings")
        return cls(token=token, secret=secret)

    def __repr__(self) -> str:
        return f"OAuthCredentials(token={mask_secret(self.token)!r}, secret=<hidden>)"


@dataclass(frozen=True)
class ConsumerCredentials:
    """OAuth consumer (application) credentials."""

    consumer_key: str
    consumer_secret: str

    def is_valid(self) -> bool:
        return bool(self.consumer_key) and bool(self.consumer_secret)

    def __repr__(self) -> str:
        return f"ConsumerCredentials(consumer_key={self.consumer_key!r}, consumer_secret=<hidden>)"


@dataclass(frozen=True)
class BearerToken:
    """Legacy static API token, sent as ``Authorization: Bearer <token>``."""

    token: str

    def get_auth_header(self) -> str:
        return f"Bearer {self.token}"

    def __repr__(self) -> str:
        return f"BearerToken(token={mask_secret(self.token)!r})"


# Resolved once when a signer is built
Credentials = OAuthCredentials | BearerToken | None


def resolve_credentials(
    consumer: ConsumerCredentials,
    oauth: OAuthCredentials | None,
    legacy_token: str | None = None,
) -> Credentials:
    """Pick the credentials a signer should use.

    OAuth signing needs all four values (consumer key/secret and token/
    secret). If any is missing, a non-empty legacy token is used instead.

    Args:
        consumer: Application credentials
        oauth: User credentials, if any are stored
        legacy_token: Optional static API token

    Returns:
        OAuthCredentials, BearerToken or None if nothing usable is configured
    """
    if oauth is not None and oauth.is_valid() and consumer.is_valid():
        return oauth

    if legacy_token:
        if oauth is not None and oauth.is_valid():
            logger.warning(
                "OAuth credentials present but consumer key/secret are not configured; "
                "using legacy bearer token"
            )
        return BearerToken(legacy_token)

    return None


@dataclass
class CLIAuthSession:
    """One browser hand-off authentication attempt.

    Attributes:
        cli_token: Random token correlating the browser consent with polling
        created_at: When the session started (UTC)
        attempt_count: Number of exchange requests made so far
        browser_dismissed: Whether the browser reported being closed
    """

    cli_token: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempt_count: int = 0
    browser_dismissed: bool = False

    def elapsed_seconds(self) -> float:
        """Seconds since the session started."""
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()
