"""
Round-robin RPC gateway with bounded retry.

Selection:
    attempt ``c`` (0-based, per call) uses ``endpoints[c % N]``.

Retry:
    - Only ``TransportError`` is retried. Everything else, including
      ``ProtocolRejection``, propagates immediately.
    - At most ``max(3, N)`` attempts, with a fixed delay between them.
    - On exhaustion the error from the *first* attempt is raised.

The loop is iterative and sequential; ``sleep`` is injectable so tests
can run without waiting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from tzops.config import DEFAULT_RETRY_DELAY
from tzops.errors import ConfigError, TransportError
from tzops.rpc.transport import HttpxTransport, NodeTransport

logger = logging.getLogger(__name__)

MIN_ATTEMPTS = 3

Sleep = Callable[[float], Awaitable[Any]]


class RpcGateway:
    """Executes node requests against an ordered endpoint list.

    Args:
        endpoints: Node base URLs. Must not be empty.
        transport: Injectable transport. Defaults to HttpxTransport.
        retry_delay: Seconds to wait between attempts.
        sleep: Awaitable sleep function. Defaults to ``asyncio.sleep``.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        transport: NodeTransport | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Sleep | None = None,
    ) -> None:
        if not endpoints:
            raise ConfigError("at least one node endpoint is required")
        self._endpoints = tuple(e.rstrip("/") for e in endpoints)
        self._transport = transport or HttpxTransport()
        self._retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    @property
    def max_attempts(self) -> int:
        return max(MIN_ATTEMPTS, len(self._endpoints))

    def url_for(self, attempt: int, path: str) -> str:
        endpoint = self._endpoints[attempt % len(self._endpoints)]
        return f"{endpoint}/{path.lstrip('/')}"

    async def get(self, path: str) -> Any:
        return await self._call("GET", path)

    async def post(self, path: str, body: Any) -> Any:
        return await self._call("POST", path, body)

    async def _call(self, method: str, path: str, body: Any = None) -> Any:
        attempts = self.max_attempts
        errors: list[TransportError] = []
        for attempt in range(attempts):
            if attempt:
                await self._sleep(self._retry_delay)
            url = self.url_for(attempt, path)
            try:
                return await self._transport.request(method, url, body)
            except TransportError as exc:
                errors.append(exc)
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s", method, url, attempt + 1, attempts, exc
                )
        raise errors[0]
