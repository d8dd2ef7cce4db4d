"""
Typed node RPC calls.

Thin wrappers over ``RpcGateway``: each method knows one RPC path and
the shape of its answer. No retry logic lives here (the gateway owns
it), no interpretation of applied results (the classifier owns it).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from tzops.config import DEFAULT_INJECTION_TIMEOUT
from tzops.errors import InjectionTimeout, ProtocolRejection
from tzops.operations import BlockHeader, ForgedOperation
from tzops.rpc.gateway import RpcGateway

logger = logging.getLogger(__name__)

HEAD = "chains/main/blocks/head"
# Operations are anchored a few blocks behind head to survive reorgs.
BRANCH_BLOCK = "head~3"

# Validation pass of manager operations in a block's operation lists.
MANAGER_PASS = 3


def _contract(pkh: str) -> str:
    return f"{HEAD}/context/contracts/{pkh}"


class NodeClient:
    """Node RPC client.

    Args:
        gateway: Gateway used for every call.
        injection_timeout: Ceiling in seconds on ``inject``.
    """

    def __init__(
        self,
        gateway: RpcGateway,
        injection_timeout: float = DEFAULT_INJECTION_TIMEOUT,
    ) -> None:
        self._gateway = gateway
        self._injection_timeout = injection_timeout

    @property
    def gateway(self) -> RpcGateway:
        return self._gateway

    # -----------------------------------------------------------------
    # Chain state
    # -----------------------------------------------------------------

    async def get_header(self, block: str = BRANCH_BLOCK) -> BlockHeader:
        data = await self._gateway.get(f"chains/main/blocks/{block}/header")
        return BlockHeader.from_dict(data)

    async def get_counter(self, pkh: str) -> int:
        return int(await self._gateway.get(f"{_contract(pkh)}/counter"))

    async def get_manager_key(self, pkh: str) -> str | None:
        """Revealed public key of ``pkh``, or None if not revealed."""
        manager = await self._gateway.get(f"{_contract(pkh)}/manager_key")
        # older protocols answered {"key": ...}
        if isinstance(manager, dict):
            manager = manager.get("key")
        return manager or None

    async def get_balance(self, address: str) -> int:
        return int(await self._gateway.get(f"{_contract(address)}/balance"))

    async def get_contract(self, address: str) -> dict[str, Any]:
        result: dict[str, Any] = await self._gateway.get(_contract(address))
        return result

    async def get_constants(self) -> dict[str, Any]:
        result: dict[str, Any] = await self._gateway.get(f"{HEAD}/context/constants")
        return result

    async def get_voting_listings(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = await self._gateway.get(f"{HEAD}/votes/listings")
        return result

    async def get_operation_hashes(self, level: int | str) -> list[str]:
        """Hashes of the manager operations included at ``level``."""
        hashes = await self._gateway.get(f"chains/main/blocks/{level}/operation_hashes")
        return list(hashes[MANAGER_PASS])

    async def get_operations(self, level: int | str) -> list[dict[str, Any]]:
        """Manager operations included at ``level``."""
        operations = await self._gateway.get(f"chains/main/blocks/{level}/operations")
        return list(operations[MANAGER_PASS])

    # -----------------------------------------------------------------
    # Operation pipeline
    # -----------------------------------------------------------------

    async def forge(self, operation: ForgedOperation) -> str:
        body = {"branch": operation.branch, "contents": [c.to_dict() for c in operation.contents]}
        forged = await self._gateway.post(f"{HEAD}/helpers/forge/operations", body)
        if not isinstance(forged, str):
            raise ProtocolRejection(200, forged)
        return forged

    async def simulate(self, operation: ForgedOperation, chain_id: str) -> dict[str, Any]:
        body = {"operation": operation.to_dict(), "chain_id": chain_id}
        result: dict[str, Any] = await self._gateway.post(
            f"{HEAD}/helpers/scripts/simulate_operation?version=1", body
        )
        return result

    async def preapply(self, operation: ForgedOperation) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = await self._gateway.post(
            f"{HEAD}/helpers/preapply/operations", [operation.to_dict()]
        )
        return result

    async def inject(self, signed_hex: str) -> Any:
        """Inject signed bytes. Returns the node's answer, normally the
        operation hash.

        Raises:
            InjectionTimeout: If the node does not answer within the
                injection timeout.
        """
        try:
            return await asyncio.wait_for(
                self._gateway.post("injection/operation", signed_hex),
                timeout=self._injection_timeout,
            )
        except TimeoutError:
            logger.warning("injection timed out after %.1fs", self._injection_timeout)
            raise InjectionTimeout(
                f"injection did not complete within {self._injection_timeout}s"
            ) from None
