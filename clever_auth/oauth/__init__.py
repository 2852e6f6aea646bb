"""OAuth 1.0a signing and CLI token authentication for clever-auth.

This package signs Clever Cloud API requests with OAuth 1.0a
(HMAC-SHA512) and obtains the user's OAuth credentials through the
browser hand-off ("CLI token") flow.

Main Components:
    Authenticator: CLI token login state machine
    RequestSigner: OAuth 1.0a request signer
    PollingClient: Token exchange polling loop
    EncryptedCredentialStore: Encrypted credential storage
    OAuthCredentials: Token/secret pair

Quick Start:
    from clever_auth.oauth import Authenticator, EncryptedCredentialStore

    auth = Authenticator(config, EncryptedCredentialStore())
    if not auth.state.is_authenticated:
        await auth.authenticate()
        await auth.wait()

    signed = auth.build_signer().sign(ApiRequest("GET", url))
"""

from .cli_token import generate_cli_token, generate_nonce
from .encoding import percent_decode, percent_encode
from .flow import BrowserLauncher, ManualLauncher, WebBrowserLauncher, build_console_url
from .manager import AuthStatus, Authenticator, ConnectionState
from .polling import FailureKind, PollingClient, PollResult, PollState
from .signature import (
    SigningContext,
    build_authorization_header,
    build_parameter_string,
    build_signature_base_string,
    derive_signing_key,
    normalize_base_url,
    sign_hmac_sha512,
)
from .signer import (
    ApiRequest,
    AuthenticationFailed,
    InvalidURL,
    RequestSigner,
    SigningError,
    SigningMode,
)
from .store import (
    CredentialDecryptionError,
    CredentialStore,
    CredentialStoreError,
    EncryptedCredentialStore,
    MemoryCredentialStore,
)
from .tokens import (
    BearerToken,
    CLIAuthSession,
    ConsumerCredentials,
    Credentials,
    OAuthCredentials,
    resolve_credentials,
)

__all__ = [
    # State machine (main entry point)
    "Authenticator",
    "AuthStatus",
    "ConnectionState",
    # Polling
    "PollingClient",
    "PollResult",
    "PollState",
    "FailureKind",
    # Signing
    "RequestSigner",
    "ApiRequest",
    "SigningMode",
    "SigningError",
    "AuthenticationFailed",
    "InvalidURL",
    "SigningContext",
    "normalize_base_url",
    "build_parameter_string",
    "build_signature_base_string",
    "derive_signing_key",
    "sign_hmac_sha512",
    "build_authorization_header",
    "percent_encode",
    "percent_decode",
    # Credentials
    "OAuthCredentials",
    "ConsumerCredentials",
    "BearerToken",
    "Credentials",
    "CLIAuthSession",
    "resolve_credentials",
    # Storage
    "CredentialStore",
    "EncryptedCredentialStore",
    "MemoryCredentialStore",
    "CredentialStoreError",
    "CredentialDecryptionError",
    # Browser hand-off
    "build_console_url",
    "BrowserLauncher",
    "WebBrowserLauncher",
    "ManualLauncher",
    "generate_cli_token",
    "generate_nonce",
]
