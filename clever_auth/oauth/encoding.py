"""RFC 3986 percent-encoding as required by OAuth 1.0a.

Only the unreserved characters (ALPHA / DIGIT / "-" / "." / "_" / "~") are
left as-is. Everything else is encoded byte by byte from its UTF-8 form,
using uppercase hex digits. Unlike form encoding, a space becomes ``%20``,
never ``+``.
"""

from urllib.parse import quote, unquote

# Characters that are never escaped (RFC 3986 Section 2.3)
UNRESERVED_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"


def percent_encode(value: str) -> str:
    """Percent-encode a string for use in an OAuth signature or header.

    Args:
        value: Any string (parameter name, parameter value, URL)

    Returns:
        The encoded string
    """
    # quote() always keeps letters, digits and "_.-~"; safe="" drops "/"
    return quote(value, safe="", encoding="utf-8", errors="strict")


def percent_decode(value: str) -> str:
    """Reverse percent_encode."""
    return unquote(value, encoding="utf-8", errors="strict")
