"""Authentication state machine for CLI token login.

The Authenticator ties the pieces together:

    authenticate()
      -> generate CLI token, build console URL    (AWAITING_USER_ACTION)
      -> hand the URL to the browser launcher
      -> poll the exchange endpoint in a task     (POLLING)
      -> save credentials                         (AUTHENTICATED)
         or record why it failed                  (FAILED)

Only the Authenticator writes its state; readers subscribe to changes.
It is also the only writer of the credential store.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from ..config import Config
from .cli_token import generate_cli_token
from .flow import BrowserLauncher, WebBrowserLauncher, build_console_url
from .polling import FailureKind, PollingClient, PollResult, PollState
from .signer import RequestSigner
from .store import CredentialDecryptionError, CredentialStore, CredentialStoreError
from .tokens import (
    CLIAuthSession,
    ConsumerCredentials,
    OAuthCredentials,
    mask_secret,
    resolve_credentials,
)

logger = logging.getLogger(__name__)


class AuthStatus(str, Enum):
    """Connection status exposed to readers."""

    IDLE = "idle"
    AWAITING_USER_ACTION = "awaiting_user_action"
    POLLING = "polling"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionState:
    """Observable state of an Authenticator.

    Attributes:
        status: Current status
        reason: Human-readable failure reason (FAILED only)
        failure: Failure category; TIMEOUT means "try again", the others
            mean something needs fixing
    """

    status: AuthStatus
    reason: str | None = None
    failure: FailureKind | None = None

    @classmethod
    def idle(cls) -> "ConnectionState":
        return cls(AuthStatus.IDLE)

    @classmethod
    def authenticated(cls) -> "ConnectionState":
        return cls(AuthStatus.AUTHENTICATED)

    @classmethod
    def failed(cls, reason: str, failure: FailureKind) -> "ConnectionState":
        return cls(AuthStatus.FAILED, reason=reason, failure=failure)

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    @property
    def is_timeout(self) -> bool:
        return self.failure is FailureKind.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "status": self.status.value,
            "reason": self.reason,
            "failure": self.failure.value if self.failure else None,
        }


StateListener = Callable[[ConnectionState], None]


class Authenticator:
    """Runs CLI token authentication and owns the resulting credentials.

    Usage:
        auth = Authenticator(config, EncryptedCredentialStore())
        if not auth.state.is_authenticated:
            await auth.authenticate()
            state = await auth.wait()

        signer = auth.build_signer()
    """

    def __init__(
        self,
        config: Config,
        store: CredentialStore,
        launcher: BrowserLauncher | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize the authenticator.

        Stored credentials with an empty token or secret are deleted here,
        and the authenticator starts IDLE as if nothing were stored.

        Args:
            config: Loaded configuration
            store: Credential store (the authenticator is its only writer)
            launcher: Opens the console URL (default: system browser)
            http_client: Optional HTTP client for polling
            on_status: Callback for human-readable progress messages
        """
        self.config = config
        self._store = store
        self._launcher = launcher or WebBrowserLauncher()
        self._http_client = http_client
        self.on_status = on_status or (lambda msg: None)

        self._listeners: list[StateListener] = []
        self._session: CLIAuthSession | None = None
        self._cancel_event: asyncio.Event | None = None
        self._task: asyncio.Task[ConnectionState] | None = None
        self.last_error: str | None = None

        self._state = self._initial_state()

    # State

    def _initial_state(self) -> ConnectionState:
        """Derive the starting state from the store, purging bad entries."""
        try:
            credentials = self._store.load()
        except CredentialDecryptionError as e:
            logger.warning(f"Stored credentials are unreadable, removing them: {e}")
            self._store.delete()
            return ConnectionState.idle()

        if credentials is None:
            logger.info("No credentials found in store")
            return ConnectionState.idle()

        if credentials.is_valid():
            logger.info(f"Found valid credentials (token {mask_secret(credentials.token)})")
            return ConnectionState.authenticated()

        logger.warning(
            f"Found invalid credentials in store "
            f"(token empty: {not credentials.token}, secret empty: {not credentials.secret}), "
            f"removing them"
        )
        self._store.delete()
        return ConnectionState.idle()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> CLIAuthSession | None:
        """The in-flight session, if any."""
        return self._session

    @property
    def is_authenticating(self) -> bool:
        return self._session is not None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener.

        The listener is called right away with the current state and then
        after every transition.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Auth state: {self._state.status.value} -> {state.status.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener raised an error")

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    # Authentication

    async def authenticate(self) -> bool:
        """Start a CLI token authentication session.

        Does nothing if a session is already running. Must be called from
        a running event loop; polling continues in a background task (see
        wait() and cancel()).

        Returns:
            True if a new session was started
        """
        if self._session is not None:
            logger.info("Authentication already in progress, not starting another session")
            return False

        if not self.config.has_consumer():
            reason = (
                "OAuth consumer key and secret are not configured. "
                "Set CLEVER_CONSUMER_KEY and CLEVER_CONSUMER_SECRET."
            )
            self.last_error = reason
            self._set_state(ConnectionState.failed(reason, FailureKind.CONFIGURATION))
            return False

        session = CLIAuthSession(cli_token=generate_cli_token())

        def record_attempt(attempt: int) -> None:
            session.attempt_count = attempt

        try:
            poller = PollingClient(
                self.config.api_host,
                http_client=self._http_client,
                interval=self.config.poll_interval,
                max_attempts=self.config.max_poll_attempts,
                request_timeout=self.config.request_timeout,
                on_attempt=record_attempt,
            )
        except ValueError as e:
            reason = f"Invalid polling configuration: {e}"
            self.last_error = reason
            self._set_state(ConnectionState.failed(reason, FailureKind.CONFIGURATION))
            return False

        self._session = session
        self.last_error = None
        logger.debug(f"Generated CLI token {mask_secret(session.cli_token)}")

        try:
            self._start_session(session, poller)
        except Exception as e:
            logger.exception("Could not start authentication session")
            self._finish_session(
                session,
                PollResult(
                    PollState.FAILED,
                    failure=FailureKind.PROTOCOL,
                    message=f"Could not start authentication: {e}",
                ),
            )
            raise
        return True

    def _start_session(self, session: CLIAuthSession, poller: PollingClient) -> None:
        console_url = build_console_url(
            self.config.console_host,
            self.config.client_version,
            session.cli_token,
        )
        self._set_state(ConnectionState(AuthStatus.AWAITING_USER_ACTION))

        self._emit_status("Opening browser for authorization...")
        try:
            opened = self._launcher.open(console_url)
        except Exception as e:
            logger.warning(f"Browser launcher failed: {type(e).__name__}: {e}")
            opened = False
        if not opened:
            self._emit_status(f"Could not open browser. Please open this URL manually:\n{console_url}")

        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event

        self._set_state(ConnectionState(AuthStatus.POLLING))
        self._emit_status("Waiting for authorization in the browser...")
        self._task = asyncio.create_task(self._run_session(session, poller, cancel_event))

    async def _run_session(
        self,
        session: CLIAuthSession,
        poller: PollingClient,
        cancel_event: asyncio.Event,
    ) -> ConnectionState:
        try:
            result = await poller.run(session.cli_token, cancel_event)
        except asyncio.CancelledError:
            self._finish_session(session, PollResult(PollState.CANCELLED, attempts=poller.attempts))
            raise
        except Exception as e:
            logger.exception("Unexpected error while polling for credentials")
            result = PollResult(
                PollState.FAILED,
                attempts=poller.attempts,
                failure=FailureKind.PROTOCOL,
                message=f"Unexpected error while waiting for authentication: {e}",
            )
        return self._finish_session(session, result)

    def _finish_session(self, session: CLIAuthSession, result: PollResult) -> ConnectionState:
        self._session = None
        self._cancel_event = None

        if result.state is PollState.SUCCEEDED and result.credentials is not None:
            state = self._store_credentials(result.credentials)
        elif result.state is PollState.CANCELLED:
            logger.info(f"Authentication cancelled after {result.attempts} attempt(s)")
            state = (
                ConnectionState.authenticated()
                if self._store.has_credentials()
                else ConnectionState.idle()
            )
        else:
            failure = result.failure or FailureKind.PROTOCOL
            reason = result.message or "Authentication failed"
            logger.error(
                f"Authentication failed ({failure.value}) after {result.attempts} attempt(s), "
                f"{session.elapsed_seconds():.0f}s: {reason}"
            )
            self.last_error = reason
            state = ConnectionState.failed(reason, failure)

        self._set_state(state)
        return state

    def _store_credentials(self, credentials: OAuthCredentials) -> ConnectionState:
        try:
            self._store.save(credentials)
        except (CredentialStoreError, OSError) as e:
            reason = f"Authenticated, but credentials could not be stored: {e}"
            logger.error(reason)
            self.last_error = reason
            return ConnectionState.failed(reason, FailureKind.CONFIGURATION)

        self.last_error = None
        self._emit_status("Successfully authenticated!")
        return ConnectionState.authenticated()

    async def wait(self) -> ConnectionState:
        """Wait for the running session (if any) to finish.

        Returns:
            The state after the session ended, or the current state
        """
        task = self._task
        if task is None:
            return self._state
        try:
            return await task
        finally:
            if self._task is task:
                self._task = None

    def cancel(self) -> bool:
        """Stop the running session without touching stored credentials.

        Returns:
            True if a session was running
        """
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        return True

    def on_browser_dismissed(self) -> None:
        """Called by a launcher when the browser page is closed.

        Closing the browser is not a failure: the console may close it
        itself after the user approves. Polling carries on until it
        succeeds, fails or times out.
        """
        session = self._session
        if session is None:
            logger.debug("Browser dismissed with no session in progress")
            return

        session.browser_dismissed = True
        logger.warning(
            f"Browser dismissed during authentication (attempt {session.attempt_count}, "
            f"{session.elapsed_seconds():.0f}s); continuing to poll"
        )
        self._emit_status("Browser closed. Still waiting for authorization to complete...")

    # Credentials

    def logout(self) -> bool:
        """Delete stored credentials and go back to IDLE.

        This does not stop a running session; call cancel() first.

        Returns:
            True if credentials were deleted, False if none were stored
        """
        deleted = self._store.delete()
        self._set_state(ConnectionState.idle())
        if deleted:
            logger.info("Logged out, credentials deleted")
        return deleted

    def reset_authentication(self) -> bool:
        """Like logout(), and also forget the last error."""
        deleted = self.logout()
        self.last_error = None
        return deleted

    def credentials(self) -> OAuthCredentials | None:
        """Return the stored credentials if they are usable."""
        try:
            credentials = self._store.load()
        except CredentialDecryptionError as e:
            logger.warning(f"Cannot read stored credentials: {e}")
            return None
        if credentials is None or not credentials.is_valid():
            return None
        return credentials

    def build_signer(self) -> RequestSigner:
        """Build a request signer from the config and stored credentials."""
        consumer = ConsumerCredentials(self.config.consumer_key, self.config.consumer_secret)
        resolved = resolve_credentials(consumer, self.credentials(), self.config.api_token)
        return RequestSigner(consumer, resolved)

    def describe(self) -> dict[str, Any]:
        """Summarize the authentication status for display (no secrets)."""
        credentials = self.credentials()
        info = self._state.to_dict()
        info.update(
            {
                "has_credentials": credentials is not None,
                "token": mask_secret(credentials.token) if credentials else None,
                "legacy_token_configured": bool(self.config.api_token),
                "consumer_configured": self.config.has_consumer(),
                "authenticating": self.is_authenticating,
                "last_error": self.last_error,
            }
        )
        return info
