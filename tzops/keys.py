"""
Key material and address utilities.

A KeyPair always carries the public key hash (``pkh``) of its public
key. The hash is derived, never set independently: constructing a
KeyPair whose ``pkh`` does not match its ``public_key`` fails.

Ed25519 keys come from a 32-byte seed (first 32 bytes of a BIP-39
seed). secp256k1 keys come from a raw 32-byte secret.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from mnemonic import Mnemonic

from tzops.codec import (
    ADDRESS_KINDS,
    PrefixKind,
    blake2b,
    decode,
    encode,
    hex_to_bytes,
)
from tzops.errors import (
    DecodeError,
    InvalidMnemonic,
    InvalidPublicKey,
    InvalidSecretKey,
    NullSeed,
)

_SPSK_RE = re.compile(r"^spsk[1-9a-km-zA-HJ-NP-Z]{50}$")
_HEX_SECRET_RE = re.compile(r"^[0-9a-f]{64}$")

# Public key prefix -> (public key kind, address kind)
_PK_TO_PKH = {
    "edpk": (PrefixKind.EDPK, PrefixKind.TZ1),
    "sppk": (PrefixKind.SPPK, PrefixKind.TZ2),
    "p2pk": (PrefixKind.P2PK, PrefixKind.TZ3),
}

_WORDLIST = Mnemonic("english")


@dataclass(frozen=True)
class KeyPair:
    """Secret key, public key and address of one account.

    ``secret_key`` is None for watch-only accounts (operations are then
    simulated instead of signed). ``public_key`` may be None when only
    the address is known.
    """

    secret_key: str | None
    public_key: str | None
    pkh: str

    def __post_init__(self) -> None:
        if self.public_key is not None and public_key_to_pkh(self.public_key) != self.pkh:
            raise InvalidPublicKey("public key does not match address")

    @classmethod
    def from_public_key(cls, public_key: str, secret_key: str | None = None) -> KeyPair:
        return cls(
            secret_key=secret_key,
            public_key=public_key,
            pkh=public_key_to_pkh(public_key),
        )


# =========================================================================
# Addresses
# =========================================================================


def public_key_to_pkh(public_key: str) -> str:
    """Hash a Base58Check public key into its implicit account address."""
    try:
        pk_kind, pkh_kind = _PK_TO_PKH[public_key[:4]]
    except KeyError:
        raise InvalidPublicKey(f"unsupported public key: {public_key[:4]}") from None
    try:
        raw = decode(public_key, pk_kind)
    except DecodeError as exc:
        raise InvalidPublicKey(str(exc)) from exc
    return encode(blake2b(raw, 20), pkh_kind)


def valid_address(address: str) -> bool:
    """Return True for any decodable implicit or originated address."""
    kind = next((k for k in ADDRESS_KINDS if address.startswith(k.value)), None)
    if kind is None:
        return False
    try:
        decode(address, kind)
    except DecodeError:
        return False
    return True


def is_implicit(address: str) -> bool:
    return address[:2] == "tz"


def is_originated(address: str) -> bool:
    return address[:2] == "KT"


# =========================================================================
# Ed25519 / mnemonic
# =========================================================================


def seed_to_key_pair(seed: bytes | None) -> KeyPair:
    """Derive an Ed25519 KeyPair from the first 32 bytes of a seed.

    The secret key is encoded in its 64-byte ``seed || public key`` form.
    """
    if not seed:
        raise NullSeed("seed is empty")
    private_key = Ed25519PrivateKey.from_private_bytes(bytes(seed[:32]))
    public_raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    public_key = encode(public_raw, PrefixKind.EDPK)
    return KeyPair(
        secret_key=encode(bytes(seed[:32]) + public_raw, PrefixKind.EDSK),
        public_key=public_key,
        pkh=encode(blake2b(public_raw, 20), PrefixKind.TZ1),
    )


def valid_mnemonic(mnemonic: str) -> bool:
    return _WORDLIST.check(mnemonic)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP-39 seed of a mnemonic, truncated to the 32 bytes used for Ed25519."""
    if not valid_mnemonic(mnemonic):
        raise InvalidMnemonic("mnemonic failed checksum validation")
    return Mnemonic.to_seed(mnemonic, passphrase)[:32]


def mnemonic_to_entropy(mnemonic: str) -> str:
    if not valid_mnemonic(mnemonic):
        raise InvalidMnemonic("mnemonic failed checksum validation")
    return bytes(_WORDLIST.to_entropy(mnemonic)).hex()


def hex_to_public_key(key_hex: str) -> str:
    """Convert a tagged (``00`` + 32 bytes) Ed25519 key in hex to ``edpk``."""
    return encode(hex_to_bytes(key_hex[2:66]), PrefixKind.EDPK)


# =========================================================================
# secp256k1
# =========================================================================


def _compress(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


def secp256k1_key_pair(secret_key: str) -> KeyPair:
    """Build a KeyPair from a 64-hex-character secret or an ``spsk`` string."""
    if _HEX_SECRET_RE.match(secret_key):
        sk = encode(hex_to_bytes(secret_key), PrefixKind.SPSK)
    elif _SPSK_RE.match(secret_key):
        sk = secret_key
    else:
        raise InvalidSecretKey("secret key must be 64 hex characters or an spsk string")

    try:
        scalar = int.from_bytes(decode(sk, PrefixKind.SPSK), "big")
        private_key = ec.derive_private_key(scalar, ec.SECP256K1())
    except (DecodeError, ValueError) as exc:
        raise InvalidSecretKey(str(exc)) from exc

    public_key = encode(_compress(private_key.public_key()), PrefixKind.SPPK)
    return KeyPair.from_public_key(public_key, secret_key=sk)


def secp256k1_points_to_pkh(x_hex: str, y_hex: str) -> str:
    """Address of the secp256k1 public key with the given affine coordinates."""
    try:
        numbers = ec.EllipticCurvePublicNumbers(int(x_hex, 16), int(y_hex, 16), ec.SECP256K1())
        public_key = numbers.public_key()
    except ValueError as exc:
        raise InvalidPublicKey(f"point is not on secp256k1: {exc}") from exc
    return public_key_to_pkh(encode(_compress(public_key), PrefixKind.SPPK))
