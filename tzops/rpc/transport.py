"""
Transport protocol for node RPC calls.

Defines the seam where the HTTP implementation plugs in. The gateway
depends on this protocol, not on httpx directly, so tests can swap in a
fake node without touching retry or parsing logic.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - fakes in tests, returning canned JSON

Error mapping (HttpxTransport):
    - connect/read/write/timeout failures -> TransportError
    - HTTP 502, 503, 504 (gateway in front of the node) -> TransportError
    - any other HTTP status >= 400 -> ProtocolRejection, carrying the
      JSON body if it parses, the raw text otherwise
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from tzops.config import DEFAULT_REQUEST_TIMEOUT
from tzops.errors import ProtocolRejection, TransportError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({502, 503, 504})


@runtime_checkable
class NodeTransport(Protocol):
    """Async transport for node RPC requests."""

    async def request(self, method: str, url: str, payload: Any = None) -> Any:
        """Send one request and return the parsed JSON response.

        Args:
            method: ``"GET"`` or ``"POST"``.
            url: Absolute URL of the RPC.
            payload: JSON body for POST requests.

        Raises:
            TransportError: The request could not complete.
            ProtocolRejection: The node answered with an error status.
        """
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    Lazily imports httpx so it is only loaded when a real network call
    is made.
    """

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self._timeout = timeout

    async def request(self, method: str, url: str, payload: Any = None) -> Any:
        import httpx

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                if method == "GET":
                    response = await client.get(url)
                else:
                    response = await client.request(
                        method,
                        url,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                    )
        except httpx.TransportError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}", url=url) from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransportError(f"HTTP {response.status_code} from {url}", url=url)
        if response.is_error:
            logger.debug("node rejected %s %s: %s", method, url, response.text)
            raise ProtocolRejection(response.status_code, _parse_body(response), url=url)
        try:
            return response.json()
        except ValueError:
            raise ProtocolRejection(response.status_code, response.text, url=url) from None


def _parse_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
