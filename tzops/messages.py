"""
Error code -> user-facing message rendering.

The engine does not own user strings. It hands an error code (an engine
``error_id`` or a node error id such as
``proto.alpha.contract.balance_too_low``) plus optional parameters and
location to an ``ErrorRenderer``. Wallets plug in their own (localised)
renderer; ``DefaultErrorRenderer`` covers the engine's own codes in
English and passes anything else through.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ErrorRenderer(Protocol):
    def render(self, code: str, params: Any = None, location: Any = None) -> str:
        """Return the message for ``code``."""
        ...


DEFAULT_MESSAGES = MappingProxyType({
    "TooHighFee": "The fee is above the allowed maximum",
    "FractionalAmount": "The amount has too many decimals for this token",
    "Unsupported Operation": "This operation is not supported",
    "InvalidAddress": "Invalid address",
    "InvalidTorusAddress": "Invalid Torus address",
    "InvalidMnemonic": "Invalid mnemonic",
    "NullSeed": "Empty seed",
    "InvalidSignature": "Invalid signature",
    "InvalidPublicKey": "Invalid public key",
    "Invalid private key": "Invalid private key",
    "Invalid prefix": "Invalid watermark",
    "UnknownAsset": "Unknown token",
    "ValidationError": "Local and remote forge of the operation differ",
    "TransportError": "Could not reach the node",
    "InjectionTimeout": "Timed out waiting for the node to inject the operation",
    "Uncaught error in applied": "The operation failed",
    "balance_too_low": "Insufficient balance",
    "subtraction_underflow": "Insufficient balance",
    "counter_in_the_past": "Another operation from this account is pending",
    "counter_in_the_future": "Another operation from this account is pending",
    "gas_exhausted.operation": "The operation ran out of gas",
    "storage_exhausted.operation": "The operation ran out of storage",
    "script_rejected": "The contract rejected the operation",
    "empty_implicit_contract": "The account is empty",
    "unregistered_delegate": "The delegate is not registered",
})


def node_error_suffix(code: str) -> str:
    """Strip the protocol prefix from a node error id.

    ``proto.016-PtMumbai.contract.balance_too_low`` -> ``balance_too_low``
    """
    if not code.startswith("proto."):
        return code
    for suffix in DEFAULT_MESSAGES:
        if code.endswith(f".{suffix}"):
            return suffix
    return code.rsplit(".", 1)[-1]


class DefaultErrorRenderer:
    """English renderer for engine and common node codes.

    Unknown codes are returned unchanged. ``params`` from a failing
    script (``with``) is appended when present.
    """

    def __init__(self, messages: dict[str, str] | None = None) -> None:
        self._messages = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update(messages)

    def render(self, code: str, params: Any = None, location: Any = None) -> str:
        message = self._messages.get(node_error_suffix(code), code)
        if params is not None:
            message = f"{message}: {_micheline_text(params)}"
        if location is not None:
            message = f"{message} (at {location})"
        return message


def _micheline_text(node: Any) -> str:
    if isinstance(node, dict):
        for key in ("string", "int", "bytes"):
            if key in node:
                return str(node[key])
        if "prim" in node:
            args = " ".join(_micheline_text(a) for a in node.get("args", []))
            return f"{node['prim']} {args}".strip()
    if isinstance(node, list):
        return "{ " + "; ".join(_micheline_text(n) for n in node) + " }"
    return str(node)
