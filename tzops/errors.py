"""
Engine error taxonomy.

Every failure the engine can report is an ``EngineError`` carrying a
stable ``error_id``. The id is what the message renderer receives, so it
must never change once published.

Retry policy:
    - TransportError: the request never completed. The RPC gateway
      retries these (bounded), nothing else does.
    - ProtocolRejection: the node answered and said no. Not retried.
    - ValidationError: local and remote forge disagree. Fatal, and the
      operation is never signed.
    - InputError subclasses: caller input is invalid. Fatal, raised
      before any network call where possible.
    - OperationFailure / UncaughtAppliedFailure: the node accepted the
      request but the operation failed when applied.
    - InjectionTimeout: injection exceeded its ceiling.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all engine errors."""

    error_id = "EngineError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error_id)


# =========================================================================
# Network
# =========================================================================


class TransportError(EngineError):
    """The request could not complete (connection, DNS, TLS, gateway)."""

    error_id = "TransportError"

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ProtocolRejection(EngineError):
    """The node explicitly rejected the request.

    Attributes:
        status_code: HTTP status returned by the node.
        body: Parsed error body. Either decoded JSON (usually a list of
            ``{"id": ..., "kind": ...}`` dicts) or the raw text, which may
            be a multi-line validation trace.
    """

    error_id = "ProtocolRejection"

    def __init__(self, status_code: int, body: Any, *, url: str | None = None) -> None:
        super().__init__(f"node rejected request with HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.url = url


class InjectionTimeout(EngineError):
    error_id = "InjectionTimeout"


# =========================================================================
# Forge gate
# =========================================================================


class ValidationError(EngineError):
    """Local forge of an operation does not match the node's forge."""

    error_id = "ValidationError"


# =========================================================================
# Caller input
# =========================================================================


class InputError(EngineError, ValueError):
    """Base class for caller-input validation failures."""

    error_id = "InputError"


class DecodeError(InputError):
    error_id = "DecodeError"


class FeeTooHigh(InputError):
    error_id = "TooHighFee"


class FractionalAmountError(InputError):
    error_id = "FractionalAmount"


class UnsupportedOperationShape(InputError):
    error_id = "Unsupported Operation"


class InvalidAddress(InputError):
    error_id = "InvalidAddress"


class InvalidTorusAddress(InvalidAddress):
    error_id = "InvalidTorusAddress"


class InvalidMnemonic(InputError):
    error_id = "InvalidMnemonic"


class NullSeed(InputError):
    error_id = "NullSeed"


class InvalidSignature(InputError):
    error_id = "InvalidSignature"


class InvalidPublicKey(InputError):
    error_id = "InvalidPublicKey"


class InvalidSecretKey(InputError):
    error_id = "Invalid private key"


class InvalidWatermark(InputError):
    error_id = "Invalid prefix"


class UnknownAsset(InputError):
    error_id = "UnknownAsset"


class ConfigError(InputError):
    error_id = "ConfigError"


# =========================================================================
# Applied results
# =========================================================================


class OperationFailure(EngineError):
    """The node applied the operation and it failed.

    Attributes:
        error: The node error object selected by the classifier
            (``{"id": ..., "with": ..., "location": ...}``).
        simulation: True if the failure came from a dry run.
    """

    error_id = "OperationFailure"

    def __init__(self, error: dict[str, Any], *, simulation: bool = False) -> None:
        self.error = error
        self.simulation = simulation
        super().__init__(str(error.get("id") or self.error_id))

    @property
    def node_error_id(self) -> str | None:
        value = self.error.get("id")
        return value if isinstance(value, str) else None

    @property
    def location(self) -> Any:
        return self.error.get("location")


class UncaughtAppliedFailure(EngineError):
    error_id = "Uncaught error in applied"
