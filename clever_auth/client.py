"""Signed HTTP client for the Clever Cloud API.

Every request goes through RequestSigner before it is sent. The URL is
built once, trailing slash removed, and the exact same URL is signed and
sent; a mismatch between the two looks like a bad credential to the
server.
"""

import logging
from typing import Any

import httpx

from .config import DEFAULT_API_HOST, DEFAULT_REQUEST_TIMEOUT
from .oauth.signer import ApiRequest, RequestSigner

logger = logging.getLogger(__name__)

API_VERSIONS = ("v2", "v4")

# Maximum error body kept in ApiError messages
MAX_ERROR_LENGTH = 500


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"HTTP error {status_code}{detail}")


class ApiClient:
    """Sends OAuth-signed requests to the Clever Cloud API.

    Usage:
        async with ApiClient(signer) as client:
            response = await client.request("GET", "/self")
            profile = response.json()
    """

    def __init__(
        self,
        signer: RequestSigner,
        api_host: str = DEFAULT_API_HOST,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.signer = signer
        self.api_host = api_host.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    def build_url(self, path: str, api_version: str = "v2") -> str:
        """Join the API base URL and an endpoint path.

        Raises:
            ValueError: If api_version is not supported
        """
        if api_version not in API_VERSIONS:
            raise ValueError(f"Unsupported API version {api_version!r}, expected one of {API_VERSIONS}")

        clean_path = path if path.startswith("/") else f"/{path}"
        return f"{self.api_host}/{api_version}{clean_path}".rstrip("/")

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        api_version: str = "v2",
    ) -> httpx.Response:
        """Send a signed request.

        Args:
            method: HTTP method
            path: Endpoint path relative to the versioned API base
            params: Query parameters (signed along with the OAuth parameters)
            json: Optional JSON body (not part of the signature)
            api_version: "v2" or "v4"

        Returns:
            The HTTP response

        Raises:
            AuthenticationFailed: If no credentials are configured
            InvalidURL: If the URL cannot be signed
            ApiError: If the API answers with a non-2xx status
            httpx.RequestError: On network failure
        """
        headers = {"Accept": "application/json"}
        if json is not None:
            headers["Content-Type"] = "application/json"

        unsigned = ApiRequest(
            method=method.upper(),
            url=self.build_url(path, api_version),
            params={key: str(value) for key, value in (params or {}).items()},
            headers=headers,
        )
        signed = self.signer.sign(unsigned)

        logger.debug(f"{signed.method} {signed.url}")
        response = await self._http.request(
            signed.method,
            signed.url,
            params=signed.params or None,
            headers=signed.headers,
            json=json,
        )

        if not response.is_success:
            message = response.text.strip()
            if len(message) > MAX_ERROR_LENGTH:
                message = message[:MAX_ERROR_LENGTH] + "..."
            if response.status_code == 401:
                logger.error("Unauthorized - OAuth credentials may be invalid or revoked")
            raise ApiError(response.status_code, message)

        return response

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
