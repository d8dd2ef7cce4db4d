"""
Public key lookup for Torus (social login) accounts.

A Torus account is a tz2 address whose secp256k1 key is held by the
Torus network. Given the uncompressed (X, Y) point of a revealed key,
the Torus JSON-RPC ``KeyLookupRequest`` answers which login owns it.
The engine treats this as an external service: it only checks that the
answer is about the point it asked for.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from tzops.rpc.transport import HttpxTransport, NodeTransport

TORUS_MAINNET_URL = "https://torus-19.torusnode.com/jrpc"
TORUS_TESTNET_URL = "https://teal-15-1.torusnode.com/jrpc"

KEY_LOOKUP_REQUEST_ID = 10


@runtime_checkable
class KeyLookupService(Protocol):
    async def lookup(self, x: str, y: str) -> dict[str, Any] | None:
        """Return the lookup answer for point (x, y), or None if the
        service does not know it."""
        ...


class TorusKeyLookup:
    """KeyLookupService backed by a Torus node.

    Args:
        network: ``"mainnet"`` selects the mainnet node, anything else
            the testnet node.
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def __init__(self, network: str = "mainnet", transport: NodeTransport | None = None) -> None:
        self._url = TORUS_MAINNET_URL if network == "mainnet" else TORUS_TESTNET_URL
        self._transport = transport or HttpxTransport()

    @property
    def url(self) -> str:
        return self._url

    async def lookup(self, x: str, y: str) -> dict[str, Any] | None:
        request = {
            "jsonrpc": "2.0",
            "method": "KeyLookupRequest",
            "id": KEY_LOOKUP_REQUEST_ID,
            "params": {"pub_key_X": x, "pub_key_Y": y},
        }
        answer = await self._transport.request("POST", self._url, request)
        try:
            public_key = answer["result"]["PublicKey"]
        except (KeyError, TypeError):
            return None
        if isinstance(public_key, dict) and public_key.get("X") == x and public_key.get("Y") == y:
            result: dict[str, Any] = answer
            return result
        return None
