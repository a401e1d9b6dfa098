"""
HTTP transport for a single delivery POST.

Wraps httpx.AsyncClient and turns every kind of failure (timeout,
network error, non-2xx status) into a TransportFailure.
"""
from typing import Any

import httpx

from courier.errors import TransportFailure


class HttpTransport:
    """Performs one bounded-timeout JSON POST to one receiver."""

    def __init__(self, client: httpx.AsyncClient | None = None, owns_client: bool = False):
        """
        Args:
            client: Shared client to reuse (tests pass one built on httpx.MockTransport).
                A short-lived client is created per request when omitted.
            owns_client: Close the shared client in aclose()
        """
        self._client = client
        self._owns_client = owns_client

    async def send(self, url: str, payload: Any, timeout: float) -> httpx.Response:
        """
        POST payload as JSON to url.

        Args:
            url: Receiver endpoint
            payload: JSON-serialisable payload
            timeout: Timeout in seconds for the whole exchange

        Returns:
            The 2xx response

        Raises:
            TransportFailure: On timeout, network error or non-2xx status
        """
        if self._client is not None:
            return await self._post(self._client, url, payload, timeout)

        async with httpx.AsyncClient() as client:
            return await self._post(client, url, payload, timeout)

    async def _post(self, client: httpx.AsyncClient, url: str, payload: Any, timeout: float) -> httpx.Response:
        try:
            response = await client.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise TransportFailure(
                url,
                f"Receiver responded with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise TransportFailure(url, f"Request timed out: {e}", error_code="timeout") from e
        except httpx.RequestError as e:
            raise TransportFailure(
                url,
                f"Request failed: {e}",
                error_code=_error_code(e),
            ) from e

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()


def _error_code(exc: httpx.RequestError) -> str:
    """Map an httpx error class to a short error code, e.g. ConnectError -> connect_error."""
    name = type(exc).__name__
    code = "".join(f"_{c.lower()}" if c.isupper() else c for c in name).lstrip("_")
    return code
