"""
Operation content types.

One frozen dataclass per operation kind, joined by the
``OperationContent`` union. Numeric fields are Python ints (exact,
never floats) and serialise to decimal strings, which is what the node
RPC expects.

Dict conversion:
    - ``to_dict()`` emits the node's JSON shape (``kind`` first).
    - ``content_from_dict()`` dispatches on ``kind``. Unknown kinds are
      rejected, estimation-only keys are dropped.

Ordering of ``ForgedOperation.contents`` is fixed at construction and
never changed downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from tzops.errors import UnsupportedOperationShape

# Keys added by fee/gas estimation that are not part of the protocol shape.
ESTIMATION_ONLY_KEYS = frozenset({"gasRecommendation", "storageRecommendation"})


def _int(data: dict[str, Any], key: str, default: int | None = None) -> int:
    value = data.get(key, default)
    if value is None:
        raise UnsupportedOperationShape(f"missing field {key!r}")
    if isinstance(value, float) or isinstance(value, bool):
        raise UnsupportedOperationShape(f"field {key!r} must be an integer string")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise UnsupportedOperationShape(f"field {key!r} must be an integer string") from None


# =========================================================================
# Content variants
# =========================================================================


@dataclass(frozen=True)
class Reveal:
    kind: ClassVar[str] = "reveal"

    source: str
    public_key: str
    fee: int = 0
    counter: int = 0
    gas_limit: int = 0
    storage_limit: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "source": self.source,
            "fee": str(self.fee),
            "counter": str(self.counter),
            "gas_limit": str(self.gas_limit),
            "storage_limit": str(self.storage_limit),
            "public_key": self.public_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reveal:
        return cls(
            source=data["source"],
            public_key=data["public_key"],
            fee=_int(data, "fee"),
            counter=_int(data, "counter"),
            gas_limit=_int(data, "gas_limit"),
            storage_limit=_int(data, "storage_limit"),
        )


@dataclass(frozen=True)
class Transaction:
    """Transfer of ``amount`` mutez, optionally invoking a contract.

    ``parameters`` is ``{"entrypoint": str, "value": micheline}``.
    """

    kind: ClassVar[str] = "transaction"

    source: str
    destination: str
    amount: int
    fee: int = 0
    counter: int = 0
    gas_limit: int = 0
    storage_limit: int = 0
    parameters: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "source": self.source,
            "fee": str(self.fee),
            "counter": str(self.counter),
            "gas_limit": str(self.gas_limit),
            "storage_limit": str(self.storage_limit),
            "amount": str(self.amount),
            "destination": self.destination,
        }
        if self.parameters is not None:
            result["parameters"] = self.parameters
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        return cls(
            source=data["source"],
            destination=data["destination"],
            amount=_int(data, "amount"),
            fee=_int(data, "fee"),
            counter=_int(data, "counter"),
            gas_limit=_int(data, "gas_limit"),
            storage_limit=_int(data, "storage_limit"),
            parameters=data.get("parameters"),
        )


@dataclass(frozen=True)
class Delegation:
    """Set (``delegate`` present) or withdraw (``delegate`` None) a delegate."""

    kind: ClassVar[str] = "delegation"

    source: str
    delegate: str | None = None
    fee: int = 0
    counter: int = 0
    gas_limit: int = 0
    storage_limit: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "source": self.source,
            "fee": str(self.fee),
            "counter": str(self.counter),
            "gas_limit": str(self.gas_limit),
            "storage_limit": str(self.storage_limit),
        }
        if self.delegate is not None:
            result["delegate"] = self.delegate
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Delegation:
        return cls(
            source=data["source"],
            delegate=data.get("delegate") or None,
            fee=_int(data, "fee"),
            counter=_int(data, "counter"),
            gas_limit=_int(data, "gas_limit"),
            storage_limit=_int(data, "storage_limit"),
        )


@dataclass(frozen=True)
class Origination:
    """Originate a contract with ``script = {"code": [...], "storage": ...}``."""

    kind: ClassVar[str] = "origination"

    source: str
    balance: int
    script: dict[str, Any]
    delegate: str | None = None
    fee: int = 0
    counter: int = 0
    gas_limit: int = 0
    storage_limit: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "source": self.source,
            "fee": str(self.fee),
            "counter": str(self.counter),
            "gas_limit": str(self.gas_limit),
            "storage_limit": str(self.storage_limit),
            "balance": str(self.balance),
        }
        if self.delegate is not None:
            result["delegate"] = self.delegate
        result["script"] = self.script
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Origination:
        return cls(
            source=data["source"],
            balance=_int(data, "balance", 0),
            script=data["script"],
            delegate=data.get("delegate") or None,
            fee=_int(data, "fee"),
            counter=_int(data, "counter"),
            gas_limit=_int(data, "gas_limit"),
            storage_limit=_int(data, "storage_limit"),
        )


@dataclass(frozen=True)
class ActivateAccount:
    """Activate a fundraiser account. ``secret`` is 20 bytes of hex."""

    kind: ClassVar[str] = "activate_account"

    pkh: str
    secret: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "pkh": self.pkh, "secret": self.secret}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivateAccount:
        return cls(pkh=data["pkh"], secret=data["secret"])


OperationContent = Reveal | Transaction | Delegation | Origination | ActivateAccount

# Kinds that carry source/fee/counter/gas_limit/storage_limit.
ManagerContent = Reveal | Transaction | Delegation | Origination

CONTENT_TYPES: dict[str, type[OperationContent]] = {
    cls.kind: cls
    for cls in (Reveal, Transaction, Delegation, Origination, ActivateAccount)
}


def content_from_dict(data: dict[str, Any]) -> OperationContent:
    """Build a typed content from its node JSON shape.

    Raises:
        UnsupportedOperationShape: Unknown kind or malformed fields.
    """
    kind = data.get("kind")
    content_type = CONTENT_TYPES.get(kind) if isinstance(kind, str) else None
    if content_type is None:
        raise UnsupportedOperationShape(f"unsupported operation kind: {kind!r}")
    cleaned = {k: v for k, v in data.items() if k not in ESTIMATION_ONLY_KEYS}
    try:
        return content_type.from_dict(cleaned)
    except KeyError as exc:
        raise UnsupportedOperationShape(f"{kind} is missing field {exc}") from None


# =========================================================================
# Operation envelope
# =========================================================================


@dataclass(frozen=True)
class ForgedOperation:
    """An operation: branch plus ordered contents, optionally signed."""

    branch: str
    contents: tuple[OperationContent, ...] = field(default_factory=tuple)
    protocol: str | None = None
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "branch": self.branch,
            "contents": [c.to_dict() for c in self.contents],
        }
        if self.protocol is not None:
            result["protocol"] = self.protocol
        if self.signature is not None:
            result["signature"] = self.signature
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ForgedOperation:
        return cls(
            branch=data["branch"],
            contents=tuple(content_from_dict(c) for c in data.get("contents", [])),
            protocol=data.get("protocol"),
            signature=data.get("signature"),
        )


@dataclass(frozen=True)
class BlockHeader:
    hash: str
    protocol: str
    chain_id: str
    level: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockHeader:
        return cls(
            hash=data["hash"],
            protocol=data["protocol"],
            chain_id=data["chain_id"],
            level=data.get("level"),
        )
