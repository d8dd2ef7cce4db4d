"""
Fixed Michelson invocation shapes.

The engine never interprets arbitrary scripts. It emits only:
    - FA1.2 ``transfer`` / ``approve`` parameters
    - FA2 ``transfer`` parameters
    - manager contract ``do`` lambdas (relay a transfer, set or remove
      the delegate)
    - the manager contract script itself, for origination

All builders are pure and return Micheline JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tzops.codec import PrefixKind, bytes_to_hex, decode

Micheline = Any


def _prim(name: str, *args: Micheline, annots: list[str] | None = None) -> dict[str, Any]:
    node: dict[str, Any] = {"prim": name}
    if args:
        node["args"] = list(args)
    if annots:
        node["annots"] = annots
    return node


def _string(value: str) -> dict[str, str]:
    return {"string": value}


def _int(value: int | str) -> dict[str, str]:
    return {"int": str(value)}


_FAIL = [[_prim("UNIT"), _prim("FAILWITH")]]


# =========================================================================
# Token standards
# =========================================================================


def fa12_transfer(source: str, destination: str, amount: int | str) -> dict[str, Any]:
    return {
        "entrypoint": "transfer",
        "value": _prim(
            "Pair",
            _string(source),
            _prim("Pair", _string(destination), _int(amount)),
        ),
    }


def fa2_transfer(
    source: str, destination: str, amount: int | str, token_id: int | str
) -> dict[str, Any]:
    return {
        "entrypoint": "transfer",
        "value": [
            _prim(
                "Pair",
                _string(source),
                [_prim("Pair", _string(destination), _prim("Pair", _int(token_id), _int(amount)))],
            )
        ],
    }


def fa12_approve(spender: str, amount: int | str) -> dict[str, Any]:
    return {"entrypoint": "approve", "value": _prim("Pair", _string(spender), _int(amount))}


def fa12_revoke(spender: str) -> dict[str, Any]:
    return fa12_approve(spender, 0)


# =========================================================================
# Manager contract relays
# =========================================================================


def manager_transfer_to_implicit(destination: str, amount: int | str) -> dict[str, Any]:
    """``do`` lambda sending ``amount`` mutez to an implicit account."""
    return {
        "entrypoint": "do",
        "value": [
            _prim("DROP"),
            _prim("NIL", _prim("operation")),
            _prim("PUSH", _prim("key_hash"), _string(destination)),
            _prim("IMPLICIT_ACCOUNT"),
            _prim("PUSH", _prim("mutez"), _int(amount)),
            _prim("UNIT"),
            _prim("TRANSFER_TOKENS"),
            _prim("CONS"),
        ],
    }


def manager_transfer_to_contract(destination: str, amount: int | str) -> dict[str, Any]:
    """``do`` lambda sending ``amount`` mutez to a contract's default entrypoint."""
    return {
        "entrypoint": "do",
        "value": [
            _prim("DROP"),
            _prim("NIL", _prim("operation")),
            _prim("PUSH", _prim("address"), _string(destination)),
            _prim("CONTRACT", _prim("unit")),
            [_prim("IF_NONE", _FAIL, [])],
            _prim("PUSH", _prim("mutez"), _int(amount)),
            _prim("UNIT"),
            _prim("TRANSFER_TOKENS"),
            _prim("CONS"),
        ],
    }


def manager_set_delegate(delegate: str) -> dict[str, Any]:
    return {
        "entrypoint": "do",
        "value": [
            _prim("DROP"),
            _prim("NIL", _prim("operation")),
            _prim("PUSH", _prim("key_hash"), _string(delegate)),
            _prim("SOME"),
            _prim("SET_DELEGATE"),
            _prim("CONS"),
        ],
    }


def manager_remove_delegate() -> dict[str, Any]:
    return {
        "entrypoint": "do",
        "value": [
            _prim("DROP"),
            _prim("NIL", _prim("operation")),
            _prim("NONE", _prim("key_hash")),
            _prim("SET_DELEGATE"),
            _prim("CONS"),
        ],
    }


def manager_script(manager: str) -> dict[str, Any]:
    """Script of a manager contract owned by ``manager``.

    ``manager`` is either a ``tz`` address or an already tagged key hash
    in hex. Storage holds the tagged key hash as bytes.
    """
    if manager.startswith("tz"):
        storage_hex = "00" + bytes_to_hex(decode(manager, PrefixKind.TZ1))
    else:
        storage_hex = manager

    compare_eq_or_fail = [
        [_prim("COMPARE"), _prim("EQ")],
        _prim("IF", [], _FAIL),
    ]
    do_branch = [
        _prim("PUSH", _prim("mutez"), _int(0)),
        _prim("AMOUNT"),
        compare_eq_or_fail,
        [_prim("DIP", [_prim("DUP")]), _prim("SWAP")],
        _prim("IMPLICIT_ACCOUNT"),
        _prim("ADDRESS"),
        _prim("SENDER"),
        compare_eq_or_fail,
        _prim("UNIT"),
        _prim("EXEC"),
        _prim("PAIR"),
    ]
    default_branch = [_prim("DROP"), _prim("NIL", _prim("operation")), _prim("PAIR")]

    code = [
        _prim(
            "parameter",
            _prim(
                "or",
                _prim(
                    "lambda",
                    _prim("unit"),
                    _prim("list", _prim("operation")),
                    annots=["%do"],
                ),
                _prim("unit", annots=["%default"]),
            ),
        ),
        _prim("storage", _prim("key_hash")),
        _prim(
            "code",
            [
                [[_prim("DUP"), _prim("CAR"), _prim("DIP", [_prim("CDR")])]],
                _prim("IF_LEFT", do_branch, default_branch),
            ],
        ),
    ]
    return {"code": code, "storage": {"bytes": storage_hex}}


# =========================================================================
# Recognising token transfers
# =========================================================================


@dataclass(frozen=True)
class TokenTransfer:
    """A recognised token transfer: ``token_id`` is ``"<contract>:<id>"``."""

    token_id: str
    to: str
    amount: str


def _leaves(node: Micheline, key: str) -> list[str]:
    if isinstance(node, list):
        return [leaf for item in node for leaf in _leaves(item, key)]
    if isinstance(node, dict):
        if key in node and isinstance(node[key], str):
            return [node[key]]
        return [leaf for arg in node.get("args", []) for leaf in _leaves(arg, key)]
    return []


def parse_token_transfer(destination: str, parameters: dict[str, Any] | None) -> TokenTransfer | None:
    """Recognise an FA1.2 or FA2 single transfer invocation.

    The parameters are accepted only if rebuilding the canonical shape
    from their string and int leaves reproduces them exactly.
    """
    if not parameters:
        return None
    value = parameters.get("value")
    addresses = _leaves(value, "string")
    amounts = _leaves(value, "int")
    if len(addresses) != 2:
        return None

    if len(amounts) == 1:
        if fa12_transfer(addresses[0], addresses[1], amounts[0]) == parameters:
            return TokenTransfer(token_id=f"{destination}:0", to=addresses[1], amount=amounts[0])
    elif len(amounts) == 2:
        token_id, amount = amounts
        if fa2_transfer(addresses[0], addresses[1], amount, token_id) == parameters:
            return TokenTransfer(token_id=f"{destination}:{token_id}", to=addresses[1], amount=amount)
    return None
