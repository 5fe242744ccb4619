"""Post-processing of custody-service ECDSA signatures.

The custody service returns a DER SEQUENCE{INTEGER r, INTEGER s} and nothing
else. Turning that into an EVM signature takes four steps:

1. Decode r and s from DER
2. Normalize s to the lower half of the curve order (EIP-2 low-S)
3. Left-pad r and s to 32 bytes
4. Find the recovery id by recovering the public key for both candidates
   and comparing against the wallet address

v is then chain_id * 2 + 35 + recovery_id (EIP-155).
"""

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_keys.constants import SECPK1_N
from eth_keys.datatypes import Signature as RecoverableSignature
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError

from kmsgate.errors import EncodingError, SignatureDecodeError

logger = logging.getLogger(__name__)

CURVE_ORDER = SECPK1_N
HALF_CURVE_ORDER = SECPK1_N // 2
WORD_SIZE = 32
EIP155_OFFSET = 35


@dataclass(frozen=True)
class Signature:
    """Canonical EVM signature.

    Attributes:
        r: R component, exactly 32 bytes big-endian
        s: S component, exactly 32 bytes big-endian, s <= N/2
        recovery_id: 0 or 1
    """
    r: bytes
    s: bytes
    recovery_id: int

    @property
    def r_int(self) -> int:
        return int.from_bytes(self.r, "big")

    @property
    def s_int(self) -> int:
        return int.from_bytes(self.s, "big")


def decode_der_signature(der_signature: bytes) -> tuple[int, int]:
    """Parse a DER-encoded ECDSA signature into (r, s).

    Raises:
        SignatureDecodeError: On malformed DER or out-of-range components
    """
    try:
        r, s = decode_dss_signature(der_signature)
    except (ValueError, TypeError) as e:
        raise SignatureDecodeError(f"malformed DER signature: {e}") from e

    if not 0 < r < CURVE_ORDER:
        raise SignatureDecodeError("signature r out of range")
    if not 0 < s < CURVE_ORDER:
        raise SignatureDecodeError("signature s out of range")
    return r, s


def enforce_low_s(s: int) -> int:
    """Replace s with N - s when s is in the upper half of the curve order.

    (r, s) and (r, N - s) both verify; validators only accept the low one.
    """
    if s > HALF_CURVE_ORDER:
        return CURVE_ORDER - s
    return s


def pad32(value: int) -> bytes:
    """Big-endian, left-padded to exactly 32 bytes.

    Raises:
        EncodingError: If the value needs more than 32 bytes
    """
    if value < 0:
        raise EncodingError("negative signature component")
    length = max(1, (value.bit_length() + 7) // 8)
    if length > WORD_SIZE:
        raise EncodingError(f"signature component is {length} bytes, max {WORD_SIZE}")
    return value.to_bytes(WORD_SIZE, "big")


def recover_address(digest: bytes, r: int, s: int, recovery_id: int) -> str:
    """Recover the signer address for one recovery id candidate.

    Raises:
        SignatureDecodeError: If no public key can be recovered
    """
    try:
        sig = RecoverableSignature(vrs=(recovery_id, r, s))
        public_key = sig.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError) as e:
        raise SignatureDecodeError(f"cannot recover public key: {e}") from e
    return "0x" + public_key.to_canonical_address().hex()


def find_recovery_id(digest: bytes, r: int, s: int, address: str) -> int:
    """Return the recovery id whose recovered key matches the wallet address.

    Raises:
        SignatureDecodeError: If neither candidate matches
    """
    expected = address.lower()
    for recovery_id in (0, 1):
        try:
            recovered = recover_address(digest, r, s, recovery_id)
        except SignatureDecodeError:
            logger.debug(f"Recovery id {recovery_id} yields no public key")
            continue
        if recovered == expected:
            return recovery_id

    raise SignatureDecodeError(f"signature does not recover to {expected}")


def eip155_v(chain_id: int, recovery_id: int) -> int:
    """Chain-bound v value."""
    if recovery_id not in (0, 1):
        raise EncodingError(f"invalid recovery id {recovery_id}")
    return chain_id * 2 + EIP155_OFFSET + recovery_id


def recovery_id_from_v(v: int, chain_id: int) -> int:
    recovery_id = v - EIP155_OFFSET - chain_id * 2
    if recovery_id not in (0, 1):
        raise EncodingError(f"v={v} does not match chain id {chain_id}")
    return recovery_id
