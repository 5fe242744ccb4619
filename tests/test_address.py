"""Tests for address derivation."""

import re

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from ecdsa import SECP256k1, SigningKey
from eth_keys import keys

from kmsgate.errors import InvalidField, InvalidPublicKey
from kmsgate.evm.address import (
    address_from_der,
    derive_address,
    keccak256,
    normalize_address,
    parse_address,
    public_key_from_der,
)

# Public key of private key 1 is the generator point G
GENERATOR_UNCOMPRESSED = bytes.fromhex(
    "04"
    "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
    "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
)
GENERATOR_ADDRESS = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"

ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


class TestKeccak:
    """Tests for the keccak256 helper."""

    def test_empty_input(self):
        """Keccak-256 of empty input is the well-known EVM constant."""
        assert keccak256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )


class TestDeriveAddress:
    """Tests for derive_address."""

    def test_generator_point(self):
        """Test derivation against the private-key-1 reference address."""
        assert derive_address(GENERATOR_UNCOMPRESSED) == GENERATOR_ADDRESS

    @pytest.mark.parametrize("secret", [1, 2, 0xC0FFEE, 2**200 + 12345])
    def test_matches_eth_keys(self, secret):
        """Test derivation agrees with eth_keys for several keys."""
        pk = keys.PrivateKey(secret.to_bytes(32, "big"))
        uncompressed = b"\x04" + pk.public_key.to_bytes()

        address = derive_address(uncompressed)

        assert address == "0x" + pk.public_key.to_canonical_address().hex()
        assert ADDRESS_RE.match(address)

    def test_deterministic(self):
        """Test the same key always gives the same address."""
        assert derive_address(GENERATOR_UNCOMPRESSED) == derive_address(GENERATOR_UNCOMPRESSED)

    def test_too_short(self):
        """Test keys shorter than 65 bytes are rejected."""
        with pytest.raises(InvalidPublicKey):
            derive_address(GENERATOR_UNCOMPRESSED[:64])

    def test_empty(self):
        with pytest.raises(InvalidPublicKey):
            derive_address(b"")

    def test_compressed_prefix_rejected(self):
        """Test a 65-byte blob without the 0x04 prefix is rejected."""
        with pytest.raises(InvalidPublicKey):
            derive_address(b"\x02" + GENERATOR_UNCOMPRESSED[1:])


class TestPublicKeyFromDer:
    """Tests for DER SubjectPublicKeyInfo parsing."""

    def test_secp256k1_der(self):
        """Test a KMS-style DER key unwraps to the uncompressed point."""
        sk = SigningKey.from_secret_exponent(1, curve=SECP256k1)
        der = sk.get_verifying_key().to_der()

        assert public_key_from_der(der) == GENERATOR_UNCOMPRESSED
        assert address_from_der(der) == GENERATOR_ADDRESS

    def test_wrong_curve(self):
        """Test a P-256 key is rejected."""
        key = ec.generate_private_key(ec.SECP256R1()).public_key()
        der = key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)

        with pytest.raises(InvalidPublicKey):
            public_key_from_der(der)

    def test_garbage(self):
        with pytest.raises(InvalidPublicKey):
            public_key_from_der(b"\x30\x03\x02\x01\x01")

    def test_raw_point_is_not_der(self):
        """Test the raw point is not mistaken for DER."""
        with pytest.raises(InvalidPublicKey):
            public_key_from_der(GENERATOR_UNCOMPRESSED)


class TestParseAddress:
    """Tests for address parsing and normalization."""

    def test_with_and_without_prefix(self):
        """Test 0x prefix is optional."""
        raw = bytes.fromhex(GENERATOR_ADDRESS[2:])
        assert parse_address(GENERATOR_ADDRESS) == raw
        assert parse_address(GENERATOR_ADDRESS[2:]) == raw

    def test_checksummed_input(self):
        """Test mixed-case (checksummed) input normalizes to lowercase."""
        checksummed = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
        assert normalize_address(checksummed) == GENERATOR_ADDRESS

    def test_roundtrip_with_hex(self):
        """Test parsing is the inverse of hex-encoding."""
        raw = bytes(range(20))
        assert parse_address("0x" + raw.hex()) == raw
        assert parse_address(raw.hex()) == raw

    @pytest.mark.parametrize("value", ["", "0x", "0x1234", "0x" + "zz" * 20, "0x" + "00" * 21])
    def test_invalid(self, value):
        """Test malformed addresses raise InvalidField naming the field."""
        with pytest.raises(InvalidField) as exc_info:
            parse_address(value, "to")
        assert exc_info.value.field == "to"
