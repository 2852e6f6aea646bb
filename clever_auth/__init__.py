"""clever-auth - OAuth 1.0a signing and CLI token login for the Clever Cloud API."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("clever-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Config",
    "load_config",
    "ApiClient",
    "Authenticator",
    "RequestSigner",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Config", "load_config"):
        from .config import Config, load_config
        return {"Config": Config, "load_config": load_config}[name]
    elif name == "ApiClient":
        from .client import ApiClient
        return ApiClient
    elif name in ("Authenticator", "RequestSigner"):
        from .oauth import Authenticator, RequestSigner
        return {"Authenticator": Authenticator, "RequestSigner": RequestSigner}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
