"""
Signer: watermarked signing for Ed25519 and secp256k1.

Signing contract:
    1. The input must start with a known one-byte watermark.
    2. digest = blake2b-256(entire watermarked input).
    3. The digest is signed with the curve selected by the secret key
       prefix (``edsk`` -> Ed25519, ``spsk`` -> secp256k1).
    4. The broadcast form is ``payload_without_watermark || signature``.

Signatures are always 64 bytes. secp256k1 signatures are ``r || s``,
each zero-padded to 32 bytes, with s normalised to the low half of the
curve order (canonical form).

Verification covers Ed25519 only. secp256k1 signatures are produced
but never checked locally.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum

from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
)

from tzops.codec import (
    PrefixKind,
    blake2b,
    bytes_to_hex,
    decode,
    detect_kind,
    encode,
    hex_to_bytes,
)
from tzops.errors import DecodeError, InvalidPublicKey, InvalidSecretKey, InvalidWatermark

# Raw signature size, identical for both curves.
SIGNATURE_LENGTH = 64
SIGNATURE_HEX_LENGTH = SIGNATURE_LENGTH * 2

# Well-known placeholder signature accepted by simulation endpoints.
DUMMY_SIGNATURE = (
    "edsigtXomBKi5CTRf5cjATJWSyaRvhfYNHqSUGrn4SdbYRcGwQrUGjzEf"
    "QDTuqHhuA8b2d8NarZjz8TRf65WkpQmo423BtomS8Q"
)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class Watermark(IntEnum):
    """Leading byte identifying the class of signed data."""

    GENERIC_OPERATION = 0x03
    EXPRESSION = 0x05
    BLOCK = 0x80


_WATERMARKS = frozenset(w.value for w in Watermark)


class Curve(StrEnum):
    ED25519 = "ed25519"
    SECP256K1 = "secp256k1"


@dataclass(frozen=True)
class SignResult:
    """Result of signing watermarked bytes.

    Attributes:
        signature: Raw 64-byte signature.
        prefixed_signature: Base58Check signature (``edsig...`` / ``spsig...``).
        signed_bytes_hex: ``payload || signature`` in hex, watermark stripped.
            This is what gets injected.
    """

    signature: bytes
    prefixed_signature: str
    signed_bytes_hex: str


# =========================================================================
# Signing
# =========================================================================


def sign(watermarked: bytes, secret_key: str) -> SignResult:
    """Sign watermarked bytes with an ``edsk`` or ``spsk`` secret key.

    Raises:
        InvalidWatermark: If the first byte is not a known watermark.
        InvalidSecretKey: If the secret key cannot be decoded.
    """
    if not watermarked or watermarked[0] not in _WATERMARKS:
        raise InvalidWatermark(
            f"unknown watermark {watermarked[:1].hex() or '<empty>'}"
        )

    digest = blake2b(watermarked, 32)
    payload = watermarked[1:]

    if secret_key.startswith("spsk"):
        signature = _sign_secp256k1(digest, secret_key)
        prefixed = encode(signature, PrefixKind.SPSIG)
    elif secret_key.startswith("edsk"):
        signature = _ed25519_private_key(secret_key).sign(digest)
        prefixed = encode(signature, PrefixKind.EDSIG)
    else:
        raise InvalidSecretKey("secret key must be an edsk or spsk string")

    return SignResult(
        signature=signature,
        prefixed_signature=prefixed,
        signed_bytes_hex=bytes_to_hex(payload + signature),
    )


def _ed25519_private_key(secret_key: str) -> Ed25519PrivateKey:
    """Load an Ed25519 key from a 64-byte (seed || pk) or 32-byte seed ``edsk``."""
    try:
        kind = detect_kind(secret_key, (PrefixKind.EDSK, PrefixKind.EDSK_SEED))
    except DecodeError as exc:
        raise InvalidSecretKey(str(exc)) from exc
    seed = decode(secret_key, kind)[:32]
    return Ed25519PrivateKey.from_private_bytes(seed)


def _secp256k1_private_key(secret_key: str) -> ec.EllipticCurvePrivateKey:
    try:
        raw = decode(secret_key, PrefixKind.SPSK)
    except DecodeError as exc:
        raise InvalidSecretKey(str(exc)) from exc
    return ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256K1())


def _sign_secp256k1(digest: bytes, secret_key: str) -> bytes:
    private_key = _secp256k1_private_key(secret_key)
    der = private_key.sign(
        digest,
        ec.ECDSA(Prehashed(hashes.SHA256()), deterministic_signing=True),
    )
    r, s = decode_dss_signature(der)
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


# =========================================================================
# Verification
# =========================================================================


def verify(signed_bytes: bytes, signature: str, public_key: str) -> bool:
    """Verify an Ed25519 signature over ``blake2b-256(signed_bytes)``.

    ``signed_bytes`` must include the watermark. ``signature`` may be an
    ``edsig`` or a generic ``sig`` string.

    Raises:
        InvalidPublicKey: If ``public_key`` is not an Ed25519 ``edpk``.
    """
    if not public_key.startswith("edpk"):
        raise InvalidPublicKey("only Ed25519 signatures can be verified")
    try:
        key = Ed25519PublicKey.from_public_bytes(decode(public_key, PrefixKind.EDPK))
        kind = detect_kind(signature, (PrefixKind.EDSIG, PrefixKind.SIG))
        raw_signature = decode(signature, kind)
    except DecodeError:
        return False

    try:
        key.verify(raw_signature, blake2b(signed_bytes, 32))
    except _CryptoInvalidSignature:
        return False
    return True


# =========================================================================
# Key and signature helpers
# =========================================================================


def decompress_public_key(public_key: str) -> tuple[str, str]:
    """Recover the uncompressed (X, Y) coordinates of an ``sppk`` key.

    Returns:
        (X, Y) as 64-character lower-case hex strings.
    """
    try:
        compressed = decode(public_key, PrefixKind.SPPK)
        point = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), compressed)
    except (DecodeError, ValueError) as exc:
        raise InvalidPublicKey(f"not a secp256k1 public key: {exc}") from exc
    numbers = point.public_numbers()
    return f"{numbers.x:064x}", f"{numbers.y:064x}"


def signature_from_hex(signature_hex: str, curve: Curve = Curve.ED25519) -> str:
    """Prefix a raw 64-byte hex signature as ``edsig`` or ``spsig``."""
    raw = hex_to_bytes(signature_hex)
    kind = PrefixKind.EDSIG if curve == Curve.ED25519 else PrefixKind.SPSIG
    return encode(raw, kind)


def signature_to_hex(signature: str) -> str:
    """Strip the prefix from a Base58Check signature and return raw hex."""
    kind = detect_kind(
        signature,
        (PrefixKind.EDSIG, PrefixKind.SPSIG, PrefixKind.P2SIG, PrefixKind.SIG),
    )
    return bytes_to_hex(decode(signature, kind))
