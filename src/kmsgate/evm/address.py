"""Account address derivation for secp256k1 custody keys.

Address format: "0x" + lowercase hex of the low 20 bytes of
keccak256(X || Y), where X || Y is the 64-byte uncompressed public point.

The custody service hands out public keys as DER SubjectPublicKeyInfo, so
they have to be unwrapped to the raw point before hashing.
"""

import logging

from Crypto.Hash import keccak
from cryptography.hazmat.primitives.asymmetric.ec import SECP256K1, EllipticCurvePublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_public_key,
)
from eth_utils import decode_hex

from kmsgate.errors import InvalidField, InvalidPublicKey

logger = logging.getLogger(__name__)

UNCOMPRESSED_POINT_LENGTH = 65
UNCOMPRESSED_POINT_PREFIX = 0x04
ADDRESS_LENGTH = 20


def keccak256(data: bytes) -> bytes:
    """Keccak-256 (the pre-NIST padding variant used by EVM chains)."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def derive_address(public_key: bytes) -> str:
    """Derive the account address from an uncompressed public key.

    Args:
        public_key: 65 bytes, 0x04 format byte followed by X || Y

    Returns:
        Lowercase "0x"-prefixed 20-byte address

    Raises:
        InvalidPublicKey: If the input is not an uncompressed point
    """
    if len(public_key) < UNCOMPRESSED_POINT_LENGTH:
        raise InvalidPublicKey(
            f"public key too short: {len(public_key)} bytes, expected {UNCOMPRESSED_POINT_LENGTH}"
        )
    if len(public_key) != UNCOMPRESSED_POINT_LENGTH or public_key[0] != UNCOMPRESSED_POINT_PREFIX:
        raise InvalidPublicKey("public key is not an uncompressed secp256k1 point")

    digest = keccak256(public_key[1:])
    return "0x" + digest[-ADDRESS_LENGTH:].hex()


def public_key_from_der(der_key: bytes) -> bytes:
    """Unwrap a DER SubjectPublicKeyInfo into a 65-byte uncompressed point.

    Raises:
        InvalidPublicKey: If the key cannot be parsed or is not secp256k1
    """
    try:
        public_key = load_der_public_key(der_key)
    except (ValueError, TypeError) as e:
        raise InvalidPublicKey(f"cannot parse DER public key: {e}") from e

    if not isinstance(public_key, EllipticCurvePublicKey):
        raise InvalidPublicKey("custody key is not an elliptic curve key")
    if not isinstance(public_key.curve, SECP256K1):
        raise InvalidPublicKey(f"custody key uses curve {public_key.curve.name}, expected secp256k1")

    return public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def address_from_der(der_key: bytes) -> str:
    """Derive the account address straight from a custody DER public key."""
    return derive_address(public_key_from_der(der_key))


def parse_address(value: str, field: str = "to") -> bytes:
    """Parse a 20-byte hex address, with or without "0x", any case.

    Raises:
        InvalidField: If the value is not 20 bytes of hex
    """
    if not isinstance(value, str):
        raise InvalidField(field, f"{field} must be a hex string")
    try:
        raw = decode_hex(value.strip())
    except ValueError as e:
        raise InvalidField(field, f"{field} is not valid hex") from e
    if len(raw) != ADDRESS_LENGTH:
        raise InvalidField(field, f"{field} must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
    return raw


def normalize_address(value: str, field: str = "address") -> str:
    """Return the canonical lowercase "0x" form of an address."""
    return "0x" + parse_address(value, field).hex()
