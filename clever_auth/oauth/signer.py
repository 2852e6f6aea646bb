"""OAuth 1.0a request signer.

The signer turns an unsigned request description into one carrying an
Authorization header. Which kind of header is decided once, when the
signer is built:

- OAuthCredentials: OAuth 1.0a HMAC-SHA512 signature
- BearerToken: legacy ``Bearer`` header (logged, never silent)
- None: every sign() call fails with AuthenticationFailed

Signing performs no network I/O. The only non-deterministic inputs are
the clock and the nonce, both of which can be injected.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .cli_token import generate_nonce
from .signature import (
    SigningContext,
    build_authorization_header,
    build_oauth_parameters,
    build_signature_base_string,
    derive_signing_key,
    normalize_base_url,
    sign_hmac_sha512,
)
from .tokens import BearerToken, ConsumerCredentials, Credentials, OAuthCredentials

logger = logging.getLogger(__name__)


class SigningError(Exception):
    """Error while signing a request."""

    pass


class AuthenticationFailed(SigningError):
    """No usable credentials are configured; no request may be sent."""

    pass


class InvalidURL(SigningError):
    """The request URL cannot be parsed into scheme, host and path."""

    pass


class SigningMode(str, Enum):
    """How a signer authenticates requests."""

    OAUTH = "oauth"
    BEARER = "bearer"
    NONE = "none"


@dataclass(frozen=True)
class ApiRequest:
    """An outgoing HTTP request, before or after signing.

    Attributes:
        method: HTTP method
        url: Absolute URL, may include a query string
        params: Extra query parameters (merged over those in the URL)
        headers: Request headers
    """

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def authorization(self) -> str | None:
        """The Authorization header, if set."""
        return self.headers.get("Authorization")

    def query_parameters(self) -> dict[str, str]:
        """All query parameters: those in the URL, then explicit params."""
        merged = dict(parse_qsl(urlsplit(self.url).query, keep_blank_values=True))
        merged.update(self.params)
        return merged

    def full_url(self) -> str:
        """The URL with every query parameter encoded into it."""
        parts = urlsplit(self.url)
        query = urlencode(self.query_parameters())
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def strip_trailing_slash(url: str) -> str:
    """Remove a trailing slash from the path of a URL, keeping the query."""
    parts = urlsplit(url)
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path.rstrip("/"), parts.query, parts.fragment)
    )


class RequestSigner:
    """Signs requests with OAuth 1.0a (or a legacy bearer token).

    The signer holds only immutable credentials, so one instance can be
    shared by concurrent callers.

    Usage:
        signer = RequestSigner(consumer, OAuthCredentials("tk", "ts"))
        signed = signer.sign(ApiRequest("GET", "https://api.example.com/v2/self"))
        signed.headers["Authorization"]  # 'OAuth oauth_consumer_key="...", ...'
    """

    def __init__(
        self,
        consumer: ConsumerCredentials,
        credentials: Credentials,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = generate_nonce,
    ):
        """Initialize the signer.

        Args:
            consumer: Application credentials
            credentials: Resolved user credentials (see resolve_credentials)
            clock: Returns the current time in seconds since the epoch
            nonce_factory: Returns a fresh nonce per request
        """
        self.consumer = consumer
        self._credentials = credentials
        self._clock = clock
        self._nonce_factory = nonce_factory

        if isinstance(credentials, OAuthCredentials):
            if credentials.is_valid() and consumer.is_valid():
                self.mode = SigningMode.OAUTH
            else:
                logger.warning("Incomplete OAuth consumer or token credentials, signing disabled")
                self.mode = SigningMode.NONE
        elif isinstance(credentials, BearerToken) and not credentials.token:
            self.mode = SigningMode.NONE
        elif isinstance(credentials, BearerToken):
            self.mode = SigningMode.BEARER
            logger.warning(
                "No OAuth credentials available, falling back to legacy bearer token. "
                "Run 'clever-auth auth login' to switch to OAuth."
            )
        else:
            self.mode = SigningMode.NONE

    def sign(
        self,
        request: ApiRequest,
        timestamp: int | None = None,
        nonce: str | None = None,
    ) -> ApiRequest:
        """Return a copy of the request with an Authorization header.

        The returned URL has any trailing slash removed from its path so
        that the URL sent matches the URL that was signed.

        Args:
            request: The unsigned request
            timestamp: Fixed timestamp (defaults to the clock)
            nonce: Fixed nonce (defaults to a fresh random one)

        Returns:
            The signed request

        Raises:
            AuthenticationFailed: If no credentials are configured
            InvalidURL: If the URL is malformed
        """
        if self.mode is SigningMode.NONE:
            raise AuthenticationFailed(
                "No credentials configured. Run 'clever-auth auth login' or set CLEVER_API_TOKEN."
            )

        try:
            base_url = normalize_base_url(request.url)
        except ValueError as e:
            raise InvalidURL(str(e)) from e

        url = strip_trailing_slash(request.url)

        if isinstance(self._credentials, BearerToken):
            logger.debug(f"Signing {request.method.upper()} {base_url} with legacy bearer token")
            header = self._credentials.get_auth_header()
        else:
            header = self.authorization_header(
                request.method,
                base_url,
                request.query_parameters(),
                timestamp=timestamp,
                nonce=nonce,
            )

        headers = dict(request.headers)
        headers["Authorization"] = header
        return replace(request, url=url, headers=headers)

    def authorization_header(
        self,
        method: str,
        base_url: str,
        parameters: dict[str, str],
        timestamp: int | None = None,
        nonce: str | None = None,
    ) -> str:
        """Compute the OAuth Authorization header for a normalized request."""
        credentials = self._credentials
        if not isinstance(credentials, OAuthCredentials):
            raise AuthenticationFailed("OAuth credentials are not configured")

        context = SigningContext(
            http_method=method,
            base_url=base_url,
            query_parameters=parameters,
            timestamp=int(self._clock()) if timestamp is None else timestamp,
            nonce=self._nonce_factory() if nonce is None else nonce,
        )

        oauth_params = build_oauth_parameters(
            self.consumer.consumer_key,
            credentials.token,
            context.timestamp,
            context.nonce,
        )
        base_string = build_signature_base_string(context, oauth_params)
        signing_key = derive_signing_key(self.consumer.consumer_secret, credentials.secret)
        oauth_params["oauth_signature"] = sign_hmac_sha512(base_string, signing_key)

        logger.debug(f"Signature base string: {base_string}")
        return build_authorization_header(oauth_params)
