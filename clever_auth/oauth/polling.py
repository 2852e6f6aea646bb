"""Polling for credentials issued against a CLI token.

Once the user approves the CLI token in the console, the API returns the
OAuth credentials for that token. Until then the exchange endpoint
answers 404, so the client asks again on a fixed interval:

    GET <api-host>/v2/self/cli_tokens?cli_token=<token>
      404 -> not claimed yet, keep polling
      200 -> {"token": "...", "secret": "..."}, done
      any other status -> failed, no retry

A PollingClient runs exactly once and ends in one of SUCCEEDED, FAILED,
TIMED_OUT or CANCELLED. Transport and protocol problems are reported in
the returned PollResult rather than raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from .tokens import OAuthCredentials, mask_secret

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "https://api.clever-cloud.com"
EXCHANGE_PATH = "/v2/self/cli_tokens"

DEFAULT_POLL_INTERVAL = 2.0  # seconds
DEFAULT_MAX_ATTEMPTS = 60  # 2 minutes at the default interval
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds, per round trip

# Log a progress line every N attempts
PROGRESS_LOG_EVERY = 10

# Maximum response body kept as diagnostic context
MAX_DIAGNOSTIC_LENGTH = 500


class PollState(str, Enum):
    """Lifecycle of a PollingClient."""

    NOT_STARTED = "not_started"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (PollState.NOT_STARTED, PollState.POLLING)


class FailureKind(str, Enum):
    """Why an authentication attempt failed."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"


@dataclass
class PollResult:
    """Outcome of a polling run (or of a single decisive attempt).

    Attributes:
        state: Terminal state
        attempts: Number of exchange requests made
        credentials: Issued credentials (SUCCEEDED only)
        failure: Failure category (FAILED and TIMED_OUT only)
        message: Human-readable description of the failure
        status_code: HTTP status of the deciding response, if any
    """

    state: PollState
    attempts: int = 0
    credentials: OAuthCredentials | None = None
    failure: FailureKind | None = None
    message: str | None = None
    status_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is PollState.SUCCEEDED and self.credentials is not None


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_DIAGNOSTIC_LENGTH:
        return text[:MAX_DIAGNOSTIC_LENGTH] + "..."
    return text


class PollingClient:
    """Polls the token exchange endpoint until credentials appear.

    Usage:
        cancel = asyncio.Event()
        client = PollingClient("https://api.clever-cloud.com")
        result = await client.run(cli_token, cancel)
        if result.succeeded:
            store.save(result.credentials)
    """

    def __init__(
        self,
        api_host: str = DEFAULT_API_HOST,
        http_client: httpx.AsyncClient | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        on_attempt: Callable[[int], None] | None = None,
    ):
        """Initialize the polling client.

        Args:
            api_host: API base URL (scheme and host)
            http_client: Optional HTTP client (one is created and closed otherwise)
            interval: Seconds between attempts
            max_attempts: Attempts before giving up with TIMED_OUT
            request_timeout: Bound on a single HTTP round trip
            on_attempt: Called with the attempt number before each request
        """
        if interval < 0:
            raise ValueError(f"interval must not be negative, got {interval}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.api_host = api_host.rstrip("/")
        self.http_client = http_client
        self.interval = interval
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout
        self.on_attempt = on_attempt or (lambda attempt: None)

        self._state = PollState.NOT_STARTED
        self._attempts = 0

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exchange_url(self) -> str:
        return f"{self.api_host}{EXCHANGE_PATH}"

    def _finish(self, result: PollResult) -> PollResult:
        result.attempts = self._attempts
        self._state = result.state
        return result

    def _cancelled(self) -> PollResult:
        logger.info(f"Polling cancelled after {self._attempts} attempt(s)")
        return self._finish(PollResult(PollState.CANCELLED))

    async def _wait_or_cancel(self, cancel_event: asyncio.Event) -> bool:
        """Sleep for one interval. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def poll_once(self, http: httpx.AsyncClient, cli_token: str) -> PollResult | None:
        """Make one exchange request.

        Returns:
            None if the token is not claimed yet (HTTP 404), otherwise a
            SUCCEEDED or FAILED result
        """
        try:
            response = await http.get(
                self.exchange_url,
                params={"cli_token": cli_token},
                headers={"Accept": "application/json"},
                timeout=self.request_timeout,
            )
        except httpx.RequestError as e:
            logger.error(f"Network error while polling for credentials: {e}")
            return PollResult(
                PollState.FAILED,
                failure=FailureKind.TRANSPORT,
                message=f"Network error while waiting for authentication: {e}",
            )

        status = response.status_code
        logger.debug(f"Token exchange responded HTTP {status}")

        if status == 404:
            return None

        # Status is authoritative: a non-200 never counts as success,
        # whatever the body says
        if status != 200:
            detail = _truncate(response.text or "")
            logger.error(f"Token exchange failed (HTTP {status}): {detail}")
            return PollResult(
                PollState.FAILED,
                failure=FailureKind.PROTOCOL,
                message=f"Token exchange failed (HTTP {status})" + (f": {detail}" if detail else ""),
                status_code=status,
            )

        try:
            data: Any = response.json()
        except ValueError:
            return PollResult(
                PollState.FAILED,
                failure=FailureKind.PROTOCOL,
                message="Token exchange returned a response that is not valid JSON",
                status_code=status,
            )

        token = data.get("token") if isinstance(data, dict) else None
        secret = data.get("secret") if isinstance(data, dict) else None
        if not isinstance(token, str) or not isinstance(secret, str) or not token or not secret:
            return PollResult(
                PollState.FAILED,
                failure=FailureKind.PROTOCOL,
                message="Token exchange response is missing token or secret",
                status_code=status,
            )

        logger.info(f"Credentials received for CLI token {mask_secret(cli_token)}")
        return PollResult(
            PollState.SUCCEEDED,
            credentials=OAuthCredentials(token=token, secret=secret),
            status_code=status,
        )

    async def run(
        self,
        cli_token: str,
        cancel_event: asyncio.Event | None = None,
    ) -> PollResult:
        """Poll until success, failure, timeout or cancellation.

        Args:
            cli_token: The token shown to the console
            cancel_event: Set it to stop polling; checked before each
                attempt, after each response and during every sleep

        Returns:
            PollResult in a terminal state

        Raises:
            RuntimeError: If this client has already run
        """
        if self._state is not PollState.NOT_STARTED:
            raise RuntimeError(f"PollingClient already used (state: {self._state.value})")

        self._state = PollState.POLLING
        cancel = cancel_event or asyncio.Event()

        logger.info(
            f"Polling {self.exchange_url} for CLI token {mask_secret(cli_token)} "
            f"(every {self.interval}s, max {self.max_attempts} attempts)"
        )

        http = self.http_client or httpx.AsyncClient(timeout=self.request_timeout)
        should_close = self.http_client is None

        try:
            for attempt in range(1, self.max_attempts + 1):
                if cancel.is_set():
                    return self._cancelled()

                self._attempts = attempt
                self.on_attempt(attempt)
                logger.debug(f"Polling attempt {attempt}/{self.max_attempts}")

                outcome = await self.poll_once(http, cli_token)

                if cancel.is_set():
                    return self._cancelled()
                if outcome is not None:
                    return self._finish(outcome)

                if attempt % PROGRESS_LOG_EVERY == 0:
                    logger.info(
                        f"Still waiting for authentication "
                        f"({attempt} attempts, ~{attempt * self.interval:.0f}s elapsed)"
                    )

                if attempt < self.max_attempts and await self._wait_or_cancel(cancel):
                    return self._cancelled()

            logger.warning(f"Polling timed out after {self._attempts} attempts")
            return self._finish(
                PollResult(
                    PollState.TIMED_OUT,
                    failure=FailureKind.TIMEOUT,
                    message=(
                        f"Authentication timed out after {self.max_attempts * self.interval:.0f}s. "
                        f"Please try again."
                    ),
                )
            )
        except asyncio.CancelledError:
            self._state = PollState.CANCELLED
            raise
        finally:
            if should_close:
                await http.aclose()
