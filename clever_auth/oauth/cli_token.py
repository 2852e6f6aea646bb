"""CLI token and nonce generation.

The CLI token correlates the browser consent step with the background
polling requests. It must be unguessable, so it always comes from the
``secrets`` module.
"""

import base64
import secrets

# Number of random bytes in a CLI token
CLI_TOKEN_BYTES = 20

# Allowed characters in a generated token (URL-safe base64 alphabet)
CLI_TOKEN_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def generate_cli_token(num_bytes: int = CLI_TOKEN_BYTES) -> str:
    """Generate a cryptographically random, URL-safe CLI token.

    The bytes are encoded as base64url ("-" and "_" instead of "+" and "/")
    with the "=" padding removed, so the token can go in a query string
    unchanged.

    Args:
        num_bytes: Number of random bytes (default 20, giving 27 characters)

    Returns:
        The encoded token

    Raises:
        ValueError: If num_bytes is not positive
    """
    if num_bytes <= 0:
        raise ValueError(f"num_bytes must be positive, got {num_bytes}")

    raw = secrets.token_bytes(num_bytes)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_nonce() -> str:
    """Generate an OAuth nonce.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)
