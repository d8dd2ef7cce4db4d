"""
Base58Check codec with versioned prefixes, hex helpers and hashing.

Every human-readable identifier on the chain (addresses, keys,
signatures, block and operation hashes) is Base58Check over
``prefix || payload``. The prefix bytes are chosen so the encoded
string starts with a recognisable tag (``tz1``, ``edpk``, ``B``...).

Law:
    decode(encode(p, k), k) == p for every payload p of the kind's
    length and every kind k. Decoding with the wrong kind fails.

The prefix table is static and read-only.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from enum import StrEnum
from types import MappingProxyType
from typing import NamedTuple

import base58

from tzops.errors import DecodeError

# =========================================================================
# Prefix table
# =========================================================================


class PrefixKind(StrEnum):
    """Symbolic kinds of Base58Check-encoded values."""

    TZ1 = "tz1"
    TZ2 = "tz2"
    TZ3 = "tz3"
    TZ4 = "tz4"
    KT1 = "KT1"
    EDPK = "edpk"
    SPPK = "sppk"
    P2PK = "p2pk"
    EDSK = "edsk"
    EDSK_SEED = "edsk_seed"
    SPSK = "spsk"
    P2SK = "p2sk"
    EDSIG = "edsig"
    SPSIG = "spsig"
    P2SIG = "p2sig"
    SIG = "sig"
    BLOCK_HASH = "B"
    OPERATION_HASH = "o"
    PROTOCOL_HASH = "P"
    CHAIN_ID = "Net"


class Prefix(NamedTuple):
    prefix: bytes
    payload_length: int


PREFIXES: MappingProxyType[PrefixKind, Prefix] = MappingProxyType({
    PrefixKind.TZ1: Prefix(bytes([6, 161, 159]), 20),
    PrefixKind.TZ2: Prefix(bytes([6, 161, 161]), 20),
    PrefixKind.TZ3: Prefix(bytes([6, 161, 164]), 20),
    PrefixKind.TZ4: Prefix(bytes([6, 161, 166]), 20),
    PrefixKind.KT1: Prefix(bytes([2, 90, 121]), 20),
    PrefixKind.EDPK: Prefix(bytes([13, 15, 37, 217]), 32),
    PrefixKind.SPPK: Prefix(bytes([3, 254, 226, 86]), 33),
    PrefixKind.P2PK: Prefix(bytes([3, 178, 139, 127]), 33),
    PrefixKind.EDSK: Prefix(bytes([43, 246, 78, 7]), 64),
    PrefixKind.EDSK_SEED: Prefix(bytes([13, 15, 58, 7]), 32),
    PrefixKind.SPSK: Prefix(bytes([17, 162, 224, 201]), 32),
    PrefixKind.P2SK: Prefix(bytes([16, 81, 238, 189]), 32),
    PrefixKind.EDSIG: Prefix(bytes([9, 245, 205, 134, 18]), 64),
    PrefixKind.SPSIG: Prefix(bytes([13, 115, 101, 19, 63]), 64),
    PrefixKind.P2SIG: Prefix(bytes([54, 240, 44, 52]), 64),
    PrefixKind.SIG: Prefix(bytes([4, 130, 43]), 64),
    PrefixKind.BLOCK_HASH: Prefix(bytes([1, 52]), 32),
    PrefixKind.OPERATION_HASH: Prefix(bytes([5, 116]), 32),
    PrefixKind.PROTOCOL_HASH: Prefix(bytes([2, 170]), 32),
    PrefixKind.CHAIN_ID: Prefix(bytes([87, 82, 0]), 4),
})

IMPLICIT_KINDS = (PrefixKind.TZ1, PrefixKind.TZ2, PrefixKind.TZ3, PrefixKind.TZ4)
ADDRESS_KINDS = IMPLICIT_KINDS + (PrefixKind.KT1,)


# =========================================================================
# Base58Check
# =========================================================================


def encode(payload: bytes, kind: PrefixKind) -> str:
    """Encode payload bytes as a prefixed Base58Check string."""
    entry = PREFIXES[kind]
    if len(payload) != entry.payload_length:
        raise DecodeError(
            f"{kind} payload must be {entry.payload_length} bytes, got {len(payload)}"
        )
    return base58.b58encode_check(entry.prefix + bytes(payload)).decode("ascii")


def decode(text: str, kind: PrefixKind) -> bytes:
    """Decode a prefixed Base58Check string into its payload bytes.

    Raises:
        DecodeError: If the checksum, prefix or payload length does not match.
    """
    entry = PREFIXES[kind]
    try:
        raw = base58.b58decode_check(text)
    except ValueError as exc:
        raise DecodeError(f"invalid base58check string for {kind}: {exc}") from exc
    if not raw.startswith(entry.prefix):
        raise DecodeError(f"prefix mismatch: value is not a {kind}")
    payload = raw[len(entry.prefix):]
    if len(payload) != entry.payload_length:
        raise DecodeError(
            f"{kind} payload must be {entry.payload_length} bytes, got {len(payload)}"
        )
    return payload


def detect_kind(text: str, candidates: Iterable[PrefixKind]) -> PrefixKind:
    """Return the first candidate kind that ``text`` decodes as."""
    for kind in candidates:
        try:
            decode(text, kind)
        except DecodeError:
            continue
        return kind
    raise DecodeError(f"value does not match any of the expected kinds: {text[:8]}...")


# =========================================================================
# Hex
# =========================================================================

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def hex_to_bytes(text: str) -> bytes:
    """Convert a hex string to bytes, rejecting odd lengths and non-hex characters."""
    if len(text) % 2 != 0:
        raise DecodeError(f"hex string has odd length {len(text)}")
    if not _HEX_RE.match(text):
        raise DecodeError("hex string contains non-hex characters")
    return bytes.fromhex(text)


def bytes_to_hex(data: bytes) -> str:
    return bytes(data).hex()


def decode_string(text: str) -> str:
    """Decode hex-encoded UTF-8 bytes."""
    return hex_to_bytes(text).decode("utf-8")


# =========================================================================
# Hashing
# =========================================================================


def blake2b(data: bytes, size: int = 32) -> bytes:
    return hashlib.blake2b(data, digest_size=size).digest()


# =========================================================================
# Zarith
# =========================================================================


def zarith_decode(text: str) -> tuple[int, int]:
    """Decode an unsigned zarith number at the start of a hex string.

    Returns:
        (value, number of bytes consumed).
    """
    data = hex_to_bytes(text[: len(text) - len(text) % 2])
    value = 0
    for count, byte in enumerate(data):
        value |= (byte & 0x7F) << (7 * count)
        if not byte & 0x80:
            return value, count + 1
    raise DecodeError("truncated zarith number")


def zarith_decode_int(text: str) -> tuple[int, int]:
    """Decode a signed zarith number at the start of a hex string.

    The first byte carries a sign bit (0x40) and six value bits; each
    following byte carries seven.
    """
    data = hex_to_bytes(text[: len(text) - len(text) % 2])
    if not data:
        raise DecodeError("truncated zarith number")
    first = data[0]
    negative = bool(first & 0x40)
    value = first & 0x3F
    if not first & 0x80:
        return (-value if negative else value), 1
    shift = 6
    for count, byte in enumerate(data[1:], start=2):
        value |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return (-value if negative else value), count
    raise DecodeError("truncated zarith number")
