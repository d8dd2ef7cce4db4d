"""
Tests for key material and address utilities.

Test plan:
- Ed25519 from seed: matches the RFC 8032 public key, deterministic,
  address equals encode(blake2b-160(public key), tz1)
- NullSeed on empty seed
- KeyPair rejects an address that does not match its public key
- Addresses: implicit / originated / invalid
- Mnemonic: validation, seed length, entropy, InvalidMnemonic
- secp256k1: key pair from hex and spsk, tz2 address, points -> address
"""

import pytest

from tzops.codec import PrefixKind, blake2b, decode, encode
from tzops.errors import InvalidMnemonic, InvalidPublicKey, InvalidSecretKey, NullSeed
from tzops.keys import (
    KeyPair,
    hex_to_public_key,
    is_implicit,
    is_originated,
    mnemonic_to_entropy,
    mnemonic_to_seed,
    public_key_to_pkh,
    secp256k1_key_pair,
    secp256k1_points_to_pkh,
    seed_to_key_pair,
    valid_address,
    valid_mnemonic,
)

# RFC 8032 test vector 1
RFC_SEED = bytes.fromhex("9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60")
RFC_PUBLIC = bytes.fromhex("d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a")

MNEMONIC = " ".join(["abandon"] * 11 + ["about"])

# secp256k1 generator point (secret key 1)
G_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
G_Y = "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
SECRET_ONE = "00" * 31 + "01"


class TestSeedToKeyPair:
    def test_public_key_matches_rfc_vector(self) -> None:
        keys = seed_to_key_pair(RFC_SEED)
        assert keys.public_key is not None
        assert decode(keys.public_key, PrefixKind.EDPK) == RFC_PUBLIC

    def test_address_is_hash_of_public_key(self) -> None:
        keys = seed_to_key_pair(RFC_SEED)
        assert keys.pkh == encode(blake2b(RFC_PUBLIC, 20), PrefixKind.TZ1)
        assert keys.pkh.startswith("tz1")

    def test_deterministic(self) -> None:
        assert seed_to_key_pair(RFC_SEED) == seed_to_key_pair(RFC_SEED)

    def test_only_first_32_bytes_used(self) -> None:
        assert seed_to_key_pair(RFC_SEED + b"\x01" * 32) == seed_to_key_pair(RFC_SEED)

    def test_secret_key_is_seed_and_public_key(self) -> None:
        keys = seed_to_key_pair(RFC_SEED)
        assert keys.secret_key is not None
        assert decode(keys.secret_key, PrefixKind.EDSK) == RFC_SEED + RFC_PUBLIC

    @pytest.mark.parametrize("seed", [b"", None])
    def test_empty_seed_rejected(self, seed: bytes | None) -> None:
        with pytest.raises(NullSeed):
            seed_to_key_pair(seed)


class TestKeyPair:
    def test_mismatched_address_rejected(self) -> None:
        keys = seed_to_key_pair(RFC_SEED)
        with pytest.raises(InvalidPublicKey):
            KeyPair(secret_key=None, public_key=keys.public_key, pkh=encode(bytes(20), PrefixKind.TZ1))

    def test_from_public_key_derives_address(self) -> None:
        keys = seed_to_key_pair(RFC_SEED)
        assert keys.public_key is not None
        watch_only = KeyPair.from_public_key(keys.public_key)
        assert watch_only.pkh == keys.pkh
        assert watch_only.secret_key is None

    def test_address_only(self) -> None:
        keys = KeyPair(secret_key=None, public_key=None, pkh="tz1anything")
        assert keys.pkh == "tz1anything"

    def test_unsupported_public_key_rejected(self) -> None:
        with pytest.raises(InvalidPublicKey):
            public_key_to_pkh("xxpk123")


class TestAddresses:
    def test_valid_implicit(self) -> None:
        assert valid_address(encode(bytes(20), PrefixKind.TZ1))
        assert valid_address(encode(bytes(20), PrefixKind.TZ2))

    def test_valid_originated(self) -> None:
        assert valid_address(encode(bytes(20), PrefixKind.KT1))

    def test_invalid(self) -> None:
        assert not valid_address("tz1abc")
        assert not valid_address("")
        assert not valid_address(encode(bytes(32), PrefixKind.EDPK))

    def test_implicit_and_originated(self) -> None:
        assert is_implicit("tz1xyz")
        assert not is_implicit("KT1xyz")
        assert is_originated("KT1xyz")
        assert not is_originated("tz2xyz")

    def test_hex_to_public_key(self) -> None:
        pk = hex_to_public_key("00" + RFC_PUBLIC.hex())
        assert decode(pk, PrefixKind.EDPK) == RFC_PUBLIC


class TestMnemonic:
    def test_valid(self) -> None:
        assert valid_mnemonic(MNEMONIC)

    def test_invalid_checksum(self) -> None:
        assert not valid_mnemonic(" ".join(["abandon"] * 12))

    def test_seed_is_32_bytes(self) -> None:
        assert len(mnemonic_to_seed(MNEMONIC)) == 32

    def test_passphrase_changes_seed(self) -> None:
        assert mnemonic_to_seed(MNEMONIC) != mnemonic_to_seed(MNEMONIC, "secret")

    def test_seed_is_deterministic(self) -> None:
        first = seed_to_key_pair(mnemonic_to_seed(MNEMONIC))
        second = seed_to_key_pair(mnemonic_to_seed(MNEMONIC))
        assert first.pkh == second.pkh

    def test_entropy(self) -> None:
        assert mnemonic_to_entropy(MNEMONIC) == "00" * 16

    def test_invalid_mnemonic_rejected(self) -> None:
        with pytest.raises(InvalidMnemonic):
            mnemonic_to_seed("not a mnemonic")
        with pytest.raises(InvalidMnemonic):
            mnemonic_to_entropy("not a mnemonic")


class TestSecp256k1:
    def test_key_pair_from_hex(self) -> None:
        keys = secp256k1_key_pair(SECRET_ONE)
        assert keys.public_key is not None
        assert decode(keys.public_key, PrefixKind.SPPK) == bytes.fromhex("02" + G_X)
        assert keys.pkh.startswith("tz2")

    def test_key_pair_from_spsk(self) -> None:
        from_hex = secp256k1_key_pair(SECRET_ONE)
        assert from_hex.secret_key is not None
        assert secp256k1_key_pair(from_hex.secret_key) == from_hex

    def test_invalid_secret_rejected(self) -> None:
        with pytest.raises(InvalidSecretKey):
            secp256k1_key_pair("1234")

    def test_points_to_pkh(self) -> None:
        assert secp256k1_points_to_pkh(G_X, G_Y) == secp256k1_key_pair(SECRET_ONE).pkh

    def test_point_off_curve_rejected(self) -> None:
        with pytest.raises(InvalidPublicKey):
            secp256k1_points_to_pkh(G_X, G_X)
