"""OAuth 1.0a signature primitives (HMAC-SHA512).

This module holds the pure, deterministic pieces of request signing:

1. Signature base string (method + base URL + sorted parameters)
2. Signing key (consumer secret + token secret)
3. HMAC-SHA512 signature, base64-encoded
4. Authorization header assembly

None of these functions read the clock or generate randomness, so the
same inputs always give the same output.
"""

import base64
import hashlib
import hmac
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from .encoding import percent_encode

SIGNATURE_METHOD = "HMAC-SHA512"
OAUTH_VERSION = "1.0"

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class SigningContext:
    """Everything about a single request that goes into its signature.

    Attributes:
        http_method: HTTP method (any case, uppercased when signing)
        base_url: scheme://host[:port]/path, no query and no trailing slash
        query_parameters: Request query parameters
        timestamp: Seconds since the epoch
        nonce: Single-use random value
    """

    http_method: str
    base_url: str
    query_parameters: Mapping[str, str] = field(default_factory=dict)
    timestamp: int = 0
    nonce: str = ""


def normalize_base_url(url: str) -> str:
    """Reduce a URL to the base string URI used for signing.

    The query string and fragment are dropped, scheme and host are
    lowercased, default ports are removed and any trailing slash on the
    path is stripped. The server recomputes the signature from the URL it
    receives, so a stray trailing slash here is enough to fail
    verification.

    Args:
        url: Absolute http(s) URL

    Returns:
        Normalized base URL

    Raises:
        ValueError: If the URL has no usable scheme, host or port
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"Unsupported URL scheme in {url!r}")

    host = parts.hostname
    if not host:
        raise ValueError(f"URL has no host: {url!r}")
    if ":" in host:
        host = f"[{host}]"

    # .port raises ValueError for out-of-range or non-numeric ports
    port = parts.port
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = parts.path.rstrip("/")
    return f"{scheme}://{netloc}{path}"


def build_oauth_parameters(
    consumer_key: str,
    token: str,
    timestamp: int,
    nonce: str,
) -> dict[str, str]:
    """Build the six OAuth protocol parameters (everything but the signature)."""
    return {
        "oauth_consumer_key": consumer_key,
        "oauth_token": token,
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": str(timestamp),
        "oauth_nonce": nonce,
        "oauth_version": OAUTH_VERSION,
    }


def _sort_key(item: tuple[str, str]) -> tuple[bytes, bytes]:
    return item[0].encode("utf-8"), item[1].encode("utf-8")


def build_parameter_string(parameters: Mapping[str, str] | Iterable[tuple[str, str]]) -> str:
    """Serialize parameters as sorted, percent-encoded ``key=value`` pairs.

    Entries are ordered by the UTF-8 bytes of the key, then of the value,
    so the result does not depend on insertion order.

    Args:
        parameters: Mapping or iterable of (name, value) pairs

    Returns:
        Parameter string joined with "&"
    """
    items = parameters.items() if isinstance(parameters, Mapping) else parameters
    ordered = sorted(items, key=_sort_key)
    return "&".join(f"{percent_encode(k)}={percent_encode(v)}" for k, v in ordered)


def build_signature_base_string(
    context: SigningContext,
    oauth_parameters: Mapping[str, str],
) -> str:
    """Build the signature base string for a request.

    Query parameters and OAuth protocol parameters are merged into one map,
    with protocol parameters winning on a name collision.

    Args:
        context: The request being signed
        oauth_parameters: Protocol parameters from build_oauth_parameters

    Returns:
        METHOD&encoded-base-url&encoded-parameter-string
    """
    merged = dict(context.query_parameters)
    merged.update(oauth_parameters)

    parameter_string = build_parameter_string(merged)
    return "&".join(
        [
            context.http_method.upper(),
            percent_encode(context.base_url),
            percent_encode(parameter_string),
        ]
    )


def derive_signing_key(consumer_secret: str, token_secret: str) -> str:
    """Combine the consumer secret and token secret into the HMAC key.

    Empty secrets give a key of just "&"; callers reject those before
    getting here.
    """
    return f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"


def sign_hmac_sha512(base_string: str, signing_key: str) -> str:
    """Compute base64(HMAC-SHA512(signing_key, base_string))."""
    digest = hmac.new(
        signing_key.encode("utf-8"),
        base_string.encode("utf-8"),
        hashlib.sha512,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def build_authorization_header(oauth_parameters: Mapping[str, str]) -> str:
    """Assemble the ``OAuth ...`` Authorization header value.

    Args:
        oauth_parameters: Protocol parameters including oauth_signature

    Returns:
        Header value with keys sorted and values percent-encoded and quoted
    """
    pairs = sorted(oauth_parameters.items(), key=_sort_key)
    rendered = ", ".join(f'{key}="{percent_encode(value)}"' for key, value in pairs)
    return f"OAuth {rendered}"
