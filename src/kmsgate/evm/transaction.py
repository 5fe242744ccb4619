"""Legacy (EIP-155) transaction building, hashing and encoding.

Signing flow:
1. build_transaction() parses the untrusted request into an UnsignedTransaction
2. signing_digest() hashes rlp([nonce, gasPrice, gasLimit, to, value, data, chainId, 0, 0])
3. The custody service signs the digest (see kmsgate.signing)
4. encode_signed_transaction() serializes rlp([..., data, v, r, s]) for broadcast

Putting chainId and the two empty placeholders in the pre-image binds the
signature to one network; the same bytes cannot be replayed on another chain.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import rlp
from eth_utils import decode_hex
from rlp.exceptions import RLPException
from rlp.sedes import Binary, List, big_endian_int, binary

from kmsgate.errors import EncodingError, InvalidField
from kmsgate.evm.address import keccak256, parse_address
from kmsgate.evm.signature import Signature, eip155_v, recover_address, recovery_id_from_v

logger = logging.getLogger(__name__)

# nonce and gas limit are 64-bit on the network, everything else a 256-bit word
UINT64_MAX = 2**64 - 1
UINT256_MAX = 2**256 - 1
CHAIN_ID_MAX = 2**64 - 1

_DECIMAL_RE = re.compile(r"^[0-9]+$")

address_sedes = Binary.fixed_length(20, allow_empty=False)

UNSIGNED_EIP155_SEDES = List([
    big_endian_int,  # nonce
    big_endian_int,  # gas price
    big_endian_int,  # gas limit
    address_sedes,   # to
    big_endian_int,  # value
    binary,          # data
    big_endian_int,  # chain id
    big_endian_int,  # 0
    big_endian_int,  # 0
])

SIGNED_LEGACY_SEDES = List([
    big_endian_int,  # nonce
    big_endian_int,  # gas price
    big_endian_int,  # gas limit
    address_sedes,   # to
    big_endian_int,  # value
    binary,          # data
    big_endian_int,  # v
    big_endian_int,  # r
    big_endian_int,  # s
])


@dataclass(frozen=True)
class SignRequest:
    """Raw sign request as received from a client.

    Numeric fields are base-10 strings; to/data are hex strings.
    """
    wallet_address: str
    key_id: str
    nonce: str
    to: str
    value: str
    gas_limit: str
    gas_price: str
    chain_id: Any
    data: Optional[str] = ""


@dataclass(frozen=True)
class UnsignedTransaction:
    """Validated, unsigned legacy transaction."""
    nonce: int
    gas_price: int
    gas_limit: int
    to: bytes
    value: int
    data: bytes
    chain_id: int


@dataclass(frozen=True)
class SignedTransaction:
    """Unsigned transaction plus its EIP-155 signature values."""
    nonce: int
    gas_price: int
    gas_limit: int
    to: bytes
    value: int
    data: bytes
    v: int
    r: int
    s: int

    @property
    def chain_id(self) -> int:
        if self.v < 35:
            raise EncodingError(f"v={self.v} is not an EIP-155 value")
        return (self.v - 35) // 2

    def unsigned(self) -> UnsignedTransaction:
        return UnsignedTransaction(
            nonce=self.nonce,
            gas_price=self.gas_price,
            gas_limit=self.gas_limit,
            to=self.to,
            value=self.value,
            data=self.data,
            chain_id=self.chain_id,
        )


def parse_decimal(value: Any, field: str, maximum: int = UINT256_MAX) -> int:
    """Parse a base-10 unsigned integer string.

    Raises:
        InvalidField: If the value is not a non-negative decimal within range
    """
    if not isinstance(value, str):
        raise InvalidField(field, f"{field} must be a decimal string")
    text = value.strip()
    if not _DECIMAL_RE.match(text):
        raise InvalidField(field, f"{field} is not a base-10 unsigned integer")
    digits = text.lstrip("0") or "0"
    if len(digits) > len(str(maximum)):
        raise InvalidField(field, f"{field} exceeds {maximum.bit_length()}-bit range")
    number = int(digits)
    if number > maximum:
        raise InvalidField(field, f"{field} exceeds {maximum.bit_length()}-bit range")
    return number


def parse_hex_data(value: Optional[str], field: str = "data") -> bytes:
    """Decode hex calldata, tolerating an optional "0x". Empty means no data."""
    if value is None:
        return b""
    if not isinstance(value, str):
        raise InvalidField(field, f"{field} must be a hex string")
    try:
        return decode_hex(value.strip())
    except ValueError as e:
        raise InvalidField(field, f"{field} is not valid hex") from e


def parse_chain_id(value: Any) -> int:
    """Chain ids arrive as JSON numbers; decimal strings are accepted too."""
    if isinstance(value, bool):
        raise InvalidField("chainId", "chainId must be an integer")
    if isinstance(value, int):
        if value < 0 or value > CHAIN_ID_MAX:
            raise InvalidField("chainId", "chainId out of range")
        return value
    return parse_decimal(value, "chainId", CHAIN_ID_MAX)


def build_transaction(request: SignRequest) -> UnsignedTransaction:
    """Parse an untrusted request into a validated UnsignedTransaction.

    Economic sanity (zero gas, zero value) is not checked here.

    Raises:
        InvalidField: Naming the first field that failed to parse
    """
    return UnsignedTransaction(
        nonce=parse_decimal(request.nonce, "nonce", UINT64_MAX),
        gas_price=parse_decimal(request.gas_price, "gasPrice"),
        gas_limit=parse_decimal(request.gas_limit, "gasLimit", UINT64_MAX),
        to=parse_address(request.to, "to"),
        value=parse_decimal(request.value, "value"),
        data=parse_hex_data(request.data),
        chain_id=parse_chain_id(request.chain_id),
    )


def signing_payload(tx: UnsignedTransaction) -> bytes:
    """RLP pre-image of the EIP-155 signing hash."""
    return rlp.encode(
        [tx.nonce, tx.gas_price, tx.gas_limit, tx.to, tx.value, tx.data, tx.chain_id, 0, 0],
        sedes=UNSIGNED_EIP155_SEDES,
    )


def signing_digest(tx: UnsignedTransaction) -> bytes:
    """32-byte chain-bound digest handed to the custody signer."""
    return keccak256(signing_payload(tx))


def assemble_signed_transaction(tx: UnsignedTransaction, signature: Signature) -> SignedTransaction:
    """Attach an EIP-155 signature to an unsigned transaction."""
    return SignedTransaction(
        nonce=tx.nonce,
        gas_price=tx.gas_price,
        gas_limit=tx.gas_limit,
        to=tx.to,
        value=tx.value,
        data=tx.data,
        v=eip155_v(tx.chain_id, signature.recovery_id),
        r=signature.r_int,
        s=signature.s_int,
    )


def encode_signed_transaction(tx: UnsignedTransaction, signature: Signature) -> bytes:
    """Serialize the signed transaction in its canonical broadcast encoding.

    Raises:
        EncodingError: If any field cannot be serialized
    """
    signed = assemble_signed_transaction(tx, signature)
    try:
        return rlp.encode(
            [
                signed.nonce,
                signed.gas_price,
                signed.gas_limit,
                signed.to,
                signed.value,
                signed.data,
                signed.v,
                signed.r,
                signed.s,
            ],
            sedes=SIGNED_LEGACY_SEDES,
        )
    except RLPException as e:
        raise EncodingError(f"failed to encode signed transaction: {e}") from e


def decode_signed_transaction(raw: bytes) -> SignedTransaction:
    """Parse a legacy signed transaction back into its fields.

    Raises:
        EncodingError: If the bytes are not a canonical legacy transaction
    """
    try:
        fields = rlp.decode(raw, sedes=SIGNED_LEGACY_SEDES)
    except RLPException as e:
        raise EncodingError(f"not a legacy signed transaction: {e}") from e

    nonce, gas_price, gas_limit, to, value, data, v, r, s = fields
    return SignedTransaction(
        nonce=nonce,
        gas_price=gas_price,
        gas_limit=gas_limit,
        to=to,
        value=value,
        data=data,
        v=v,
        r=r,
        s=s,
    )


def recover_sender(signed: SignedTransaction) -> str:
    """Recover the address that signed a decoded transaction."""
    unsigned = signed.unsigned()
    recovery_id = recovery_id_from_v(signed.v, unsigned.chain_id)
    return recover_address(signing_digest(unsigned), signed.r, signed.s, recovery_id)


def to_hex(raw: bytes) -> str:
    """Transport form of encoded bytes."""
    return "0x" + raw.hex()
