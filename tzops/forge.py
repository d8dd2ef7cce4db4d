"""
Local forger: canonical binary encoding of operations.

The node forges every operation we send. We forge it again here, with
no network access, and require byte equality before anything is
signed. A mismatch means the node is lying or speaks a different
protocol version; either way the operation is abandoned.

Layout:
    operation   = branch(32) || content*
    reveal      = 0x6b || source || fee || counter || gas || storage || public_key
    transaction = 0x6c || source || fee || counter || gas || storage || amount
                  || destination || (0x00 | 0xff || entrypoint || len(4) || micheline)
    origination = 0x6d || source || fee || counter || gas || storage || balance
                  || (0x00 | 0xff || pkh) || len(4) || code || len(4) || storage
    delegation  = 0x6e || source || fee || counter || gas || storage || (0x00 | 0xff || pkh)
    activation  = 0x04 || pkh(20) || secret(20)

    Numbers are zarith (7 bits per byte, little-endian, high bit =
    continuation). Micheline ints are signed zarith (sign bit 0x40 in
    the first byte).

``unforge_operation`` is the inverse and is used to rebuild the JSON of
pre-signed bytes.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any

from tzops.codec import (
    PREFIXES,
    PrefixKind,
    bytes_to_hex,
    decode,
    encode,
    hex_to_bytes,
)
from tzops.errors import DecodeError, UnsupportedOperationShape, ValidationError
from tzops.operations import (
    ActivateAccount,
    Delegation,
    ForgedOperation,
    OperationContent,
    Origination,
    Reveal,
    Transaction,
)

Micheline = Any

# =========================================================================
# Tables
# =========================================================================

OPERATION_TAGS = MappingProxyType({
    "activate_account": 0x04,
    "reveal": 0x6B,
    "transaction": 0x6C,
    "origination": 0x6D,
    "delegation": 0x6E,
})
_TAG_TO_KIND = {tag: kind for kind, tag in OPERATION_TAGS.items()}

_PKH_TAGS = MappingProxyType({
    PrefixKind.TZ1: 0x00,
    PrefixKind.TZ2: 0x01,
    PrefixKind.TZ3: 0x02,
    PrefixKind.TZ4: 0x03,
})
_TAG_TO_PKH = {tag: kind for kind, tag in _PKH_TAGS.items()}

_PUBLIC_KEY_TAGS = MappingProxyType({
    PrefixKind.EDPK: 0x00,
    PrefixKind.SPPK: 0x01,
    PrefixKind.P2PK: 0x02,
})
_TAG_TO_PUBLIC_KEY = {tag: kind for kind, tag in _PUBLIC_KEY_TAGS.items()}

ENTRYPOINTS = MappingProxyType({
    "default": 0x00,
    "root": 0x01,
    "do": 0x02,
    "set_delegate": 0x03,
    "remove_delegate": 0x04,
    "deposit": 0x05,
    "stake": 0x06,
    "unstake": 0x07,
    "finalize_unstake": 0x08,
    "set_delegate_parameters": 0x09,
})
_CODE_TO_ENTRYPOINT = {code: name for name, code in ENTRYPOINTS.items()}

# Michelson primitives in protocol order: the index is the binary op code.
PRIMITIVES = (
    "parameter", "storage", "code", "False", "Elt", "Left", "None", "Pair",
    "Right", "Some", "True", "Unit", "PACK", "UNPACK", "BLAKE2B", "SHA256",
    "SHA512", "ABS", "ADD", "AMOUNT", "AND", "BALANCE", "CAR", "CDR",
    "CHECK_SIGNATURE", "COMPARE", "CONCAT", "CONS", "CREATE_ACCOUNT",
    "CREATE_CONTRACT", "IMPLICIT_ACCOUNT", "DIP", "DROP", "DUP", "EDIV",
    "EMPTY_MAP", "EMPTY_SET", "EQ", "EXEC", "FAILWITH", "GE", "GET", "GT",
    "HASH_KEY", "IF", "IF_CONS", "IF_LEFT", "IF_NONE", "INT", "LAMBDA", "LE",
    "LEFT", "LOOP", "LSL", "LSR", "LT", "MAP", "MEM", "MUL", "NEG", "NEQ",
    "NIL", "NONE", "NOT", "NOW", "OR", "PAIR", "PUSH", "RIGHT", "SIZE",
    "SOME", "SOURCE", "SENDER", "SELF", "STEPS_TO_QUOTA", "SUB", "SWAP",
    "TRANSFER_TOKENS", "SET_DELEGATE", "UNIT", "UPDATE", "XOR", "ITER",
    "LOOP_LEFT", "ADDRESS", "CONTRACT", "ISNAT", "CAST", "RENAME", "bool",
    "contract", "int", "key", "key_hash", "lambda", "list", "map", "big_map",
    "nat", "option", "or", "pair", "set", "signature", "string", "bytes",
    "mutez", "timestamp", "unit", "operation", "address", "SLICE", "DIG",
    "DUG", "EMPTY_BIG_MAP", "APPLY", "chain_id", "CHAIN_ID", "LEVEL",
    "SELF_ADDRESS", "never", "NEVER", "UNPAIR", "VOTING_POWER",
    "TOTAL_VOTING_POWER", "KECCAK", "SHA3", "PAIRING_CHECK", "bls12_381_g1",
    "bls12_381_g2", "bls12_381_fr", "sapling_state",
    "sapling_transaction_deprecated", "SAPLING_EMPTY_STATE",
    "SAPLING_VERIFY_UPDATE", "ticket", "TICKET_DEPRECATED", "READ_TICKET",
    "SPLIT_TICKET", "JOIN_TICKETS", "GET_AND_UPDATE", "chest", "chest_key",
    "OPEN_CHEST", "VIEW", "view", "constant", "SUB_MUTEZ",
    "tx_rollup_l2_address", "MIN_BLOCK_TIME", "sapling_transaction", "EMIT",
    "Lambda_rec", "LAMBDA_REC", "TICKET", "BYTES", "NAT",
)
_PRIMITIVE_CODES = {name: code for code, name in enumerate(PRIMITIVES)}

# Micheline node tags.
_INT = 0x00
_STRING = 0x01
_SEQUENCE = 0x02
_PRIM_0 = 0x03
_PRIM_N = 0x09
_BYTES = 0x0A


# =========================================================================
# Primitive encoders
# =========================================================================


def encode_nat(value: int) -> bytes:
    """Unsigned zarith encoding."""
    if value < 0:
        raise UnsupportedOperationShape(f"natural number expected, got {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_int(value: int) -> bytes:
    """Signed zarith encoding (Micheline ints)."""
    magnitude = abs(value)
    first = magnitude & 0x3F
    if value < 0:
        first |= 0x40
    magnitude >>= 6
    out = bytearray([first | 0x80 if magnitude else first])
    while magnitude:
        byte = magnitude & 0x7F
        magnitude >>= 7
        out.append(byte | 0x80 if magnitude else byte)
    return bytes(out)


def _length_prefixed(data: bytes) -> bytes:
    return len(data).to_bytes(4, "big") + data


def _address_kind(address: str, kinds: tuple[PrefixKind, ...]) -> PrefixKind:
    for kind in kinds:
        if address.startswith(kind.value):
            return kind
    raise UnsupportedOperationShape(f"unsupported address: {address[:4]}")


def encode_pkh(address: str) -> bytes:
    """Tagged 21-byte implicit account hash."""
    kind = _address_kind(address, tuple(_PKH_TAGS))
    return bytes([_PKH_TAGS[kind]]) + decode(address, kind)


def encode_contract(address: str) -> bytes:
    """22-byte contract id: implicit (0x00 || pkh) or originated (0x01 || hash || 0x00)."""
    if address.startswith("KT1"):
        return b"\x01" + decode(address, PrefixKind.KT1) + b"\x00"
    return b"\x00" + encode_pkh(address)


def encode_public_key(public_key: str) -> bytes:
    kind = _address_kind(public_key, tuple(_PUBLIC_KEY_TAGS))
    return bytes([_PUBLIC_KEY_TAGS[kind]]) + decode(public_key, kind)


def _encode_entrypoint(name: str) -> bytes:
    if name in ENTRYPOINTS:
        return bytes([ENTRYPOINTS[name]])
    raw = name.encode("utf-8")
    if len(raw) > 31:
        raise UnsupportedOperationShape(f"entrypoint name too long: {name}")
    return b"\xff" + bytes([len(raw)]) + raw


def encode_micheline(node: Micheline) -> bytes:
    """Binary Micheline encoding of a JSON node."""
    if isinstance(node, list):
        return bytes([_SEQUENCE]) + _length_prefixed(b"".join(encode_micheline(n) for n in node))
    if not isinstance(node, dict):
        raise UnsupportedOperationShape(f"invalid micheline node: {node!r}")
    if "int" in node:
        return bytes([_INT]) + encode_int(int(node["int"]))
    if "string" in node:
        return bytes([_STRING]) + _length_prefixed(node["string"].encode("utf-8"))
    if "bytes" in node:
        return bytes([_BYTES]) + _length_prefixed(hex_to_bytes(node["bytes"]))
    if "prim" not in node:
        raise UnsupportedOperationShape(f"invalid micheline node: {node!r}")

    try:
        code = bytes([_PRIMITIVE_CODES[node["prim"]]])
    except KeyError:
        raise UnsupportedOperationShape(f"unknown primitive: {node['prim']}") from None
    args = node.get("args") or []
    annots = node.get("annots") or []
    encoded_args = b"".join(encode_micheline(a) for a in args)
    encoded_annots = _length_prefixed(" ".join(annots).encode("utf-8")) if annots else b""

    if len(args) <= 2:
        tag = _PRIM_0 + 2 * len(args) + (1 if annots else 0)
        return bytes([tag]) + code + encoded_args + encoded_annots
    return (
        bytes([_PRIM_N])
        + code
        + _length_prefixed(encoded_args)
        + _length_prefixed(" ".join(annots).encode("utf-8"))
    )


# =========================================================================
# Content encoders
# =========================================================================


def _manager_header(content: Reveal | Transaction | Delegation | Origination) -> bytes:
    return (
        bytes([OPERATION_TAGS[content.kind]])
        + encode_pkh(content.source)
        + encode_nat(content.fee)
        + encode_nat(content.counter)
        + encode_nat(content.gas_limit)
        + encode_nat(content.storage_limit)
    )


def _optional_pkh(address: str | None) -> bytes:
    return b"\xff" + encode_pkh(address) if address else b"\x00"


def forge_content(content: OperationContent) -> bytes:
    match content:
        case Reveal():
            return _manager_header(content) + encode_public_key(content.public_key)
        case Transaction():
            out = _manager_header(content) + encode_nat(content.amount) + encode_contract(content.destination)
            if content.parameters is None:
                return out + b"\x00"
            entrypoint = content.parameters.get("entrypoint", "default")
            value = encode_micheline(content.parameters["value"])
            return out + b"\xff" + _encode_entrypoint(entrypoint) + _length_prefixed(value)
        case Delegation():
            return _manager_header(content) + _optional_pkh(content.delegate)
        case Origination():
            return (
                _manager_header(content)
                + encode_nat(content.balance)
                + _optional_pkh(content.delegate)
                + _length_prefixed(encode_micheline(content.script["code"]))
                + _length_prefixed(encode_micheline(content.script["storage"]))
            )
        case ActivateAccount():
            return (
                bytes([OPERATION_TAGS[content.kind]])
                + decode(content.pkh, PrefixKind.TZ1)
                + hex_to_bytes(content.secret)
            )
    raise UnsupportedOperationShape(f"cannot forge {type(content).__name__}")


def forge_operation(operation: ForgedOperation) -> str:
    """Forge an operation locally and return its hex encoding."""
    data = decode(operation.branch, PrefixKind.BLOCK_HASH)
    data += b"".join(forge_content(c) for c in operation.contents)
    return bytes_to_hex(data)


def verify_forge(remote_hex: str, operation: ForgedOperation) -> str:
    """Check the node's forge against the local forge.

    Returns:
        The verified hex bytes.

    Raises:
        ValidationError: If the two encodings differ in any byte.
    """
    try:
        local_hex = forge_operation(operation)
    except (UnsupportedOperationShape, DecodeError) as exc:
        raise ValidationError(f"operation cannot be forged locally: {exc}") from exc
    if not isinstance(remote_hex, str) or remote_hex.lower() != local_hex:
        raise ValidationError("remote forge does not match local forge")
    return local_hex


# =========================================================================
# Decoding
# =========================================================================


class _Reader:
    """Cursor over forged bytes."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, n: int) -> bytes:
        if n > self.remaining:
            raise DecodeError("unexpected end of forged bytes")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def length_prefixed(self) -> bytes:
        return self.take(int.from_bytes(self.take(4), "big"))

    def nat(self) -> int:
        value = 0
        shift = 0
        while True:
            byte = self.byte()
            value |= (byte & 0x7F) << shift
            shift += 7
            if not byte & 0x80:
                return value

    def signed(self) -> int:
        first = self.byte()
        value = first & 0x3F
        shift = 6
        more = first & 0x80
        while more:
            byte = self.byte()
            value |= (byte & 0x7F) << shift
            shift += 7
            more = byte & 0x80
        return -value if first & 0x40 else value

    def pkh(self) -> str:
        tag = self.byte()
        if tag not in _TAG_TO_PKH:
            raise DecodeError(f"unknown key hash tag {tag:#x}")
        return encode(self.take(20), _TAG_TO_PKH[tag])

    def contract(self) -> str:
        tag = self.byte()
        if tag == 0x00:
            return self.pkh()
        if tag == 0x01:
            address = encode(self.take(20), PrefixKind.KT1)
            self.take(1)
            return address
        raise DecodeError(f"unknown contract tag {tag:#x}")

    def public_key(self) -> str:
        tag = self.byte()
        if tag not in _TAG_TO_PUBLIC_KEY:
            raise DecodeError(f"unknown public key tag {tag:#x}")
        kind = _TAG_TO_PUBLIC_KEY[tag]
        return encode(self.take(PREFIXES[kind].payload_length), kind)

    def optional_pkh(self) -> str | None:
        return self.pkh() if self.byte() == 0xFF else None


def decode_micheline(data: bytes) -> Micheline:
    reader = _Reader(data)
    node = _read_micheline(reader)
    if reader.remaining:
        raise DecodeError("trailing bytes after micheline expression")
    return node


def _read_annots(reader: _Reader) -> list[str]:
    text = reader.length_prefixed().decode("utf-8")
    return text.split(" ") if text else []


def _read_micheline(reader: _Reader) -> Micheline:
    tag = reader.byte()
    if tag == _INT:
        return {"int": str(reader.signed())}
    if tag == _STRING:
        return {"string": reader.length_prefixed().decode("utf-8")}
    if tag == _BYTES:
        return {"bytes": bytes_to_hex(reader.length_prefixed())}
    if tag == _SEQUENCE:
        inner = _Reader(reader.length_prefixed())
        items = []
        while inner.remaining:
            items.append(_read_micheline(inner))
        return items
    if tag > _PRIM_N:
        raise DecodeError(f"unknown micheline tag {tag:#x}")

    code = reader.byte()
    if code >= len(PRIMITIVES):
        raise DecodeError(f"unknown primitive code {code}")
    node: dict[str, Any] = {"prim": PRIMITIVES[code]}
    if tag == _PRIM_N:
        inner = _Reader(reader.length_prefixed())
        args = []
        while inner.remaining:
            args.append(_read_micheline(inner))
        annots = _read_annots(reader)
    else:
        arg_count = (tag - _PRIM_0) // 2
        args = [_read_micheline(reader) for _ in range(arg_count)]
        annots = _read_annots(reader) if (tag - _PRIM_0) % 2 else []
    if args:
        node["args"] = args
    if annots:
        node["annots"] = annots
    return node


def _read_entrypoint(reader: _Reader) -> str:
    code = reader.byte()
    if code == 0xFF:
        return reader.take(reader.byte()).decode("utf-8")
    if code not in _CODE_TO_ENTRYPOINT:
        raise DecodeError(f"unknown entrypoint code {code:#x}")
    return _CODE_TO_ENTRYPOINT[code]


def _read_content(reader: _Reader) -> OperationContent:
    tag = reader.byte()
    kind = _TAG_TO_KIND.get(tag)
    if kind is None:
        raise DecodeError(f"unsupported operation tag {tag:#x}")

    if kind == "activate_account":
        pkh = encode(reader.take(20), PrefixKind.TZ1)
        return ActivateAccount(pkh=pkh, secret=bytes_to_hex(reader.take(20)))

    header = {
        "source": reader.pkh(),
        "fee": reader.nat(),
        "counter": reader.nat(),
        "gas_limit": reader.nat(),
        "storage_limit": reader.nat(),
    }
    if kind == "reveal":
        return Reveal(public_key=reader.public_key(), **header)
    if kind == "delegation":
        return Delegation(delegate=reader.optional_pkh(), **header)
    if kind == "origination":
        balance = reader.nat()
        delegate = reader.optional_pkh()
        code = decode_micheline(reader.length_prefixed())
        storage = decode_micheline(reader.length_prefixed())
        return Origination(
            balance=balance,
            delegate=delegate,
            script={"code": code, "storage": storage},
            **header,
        )

    amount = reader.nat()
    destination = reader.contract()
    parameters = None
    if reader.byte() == 0xFF:
        entrypoint = _read_entrypoint(reader)
        parameters = {
            "entrypoint": entrypoint,
            "value": decode_micheline(reader.length_prefixed()),
        }
    return Transaction(amount=amount, destination=destination, parameters=parameters, **header)


def unforge_operation(forged_hex: str) -> ForgedOperation:
    """Parse forged (unsigned) operation bytes back into an operation."""
    reader = _Reader(hex_to_bytes(forged_hex))
    branch = encode(reader.take(32), PrefixKind.BLOCK_HASH)
    contents = []
    while reader.remaining:
        contents.append(_read_content(reader))
    if not contents:
        raise DecodeError("forged operation has no contents")
    return ForgedOperation(branch=branch, contents=tuple(contents))
