"""EVM transaction primitives: addresses, EIP-155 transactions, signatures."""

from kmsgate.evm.address import (
    derive_address,
    keccak256,
    normalize_address,
    public_key_from_der,
)
from kmsgate.evm.signature import (
    Signature,
    decode_der_signature,
    eip155_v,
    enforce_low_s,
    find_recovery_id,
    pad32,
)
from kmsgate.evm.transaction import (
    SignedTransaction,
    SignRequest,
    UnsignedTransaction,
    build_transaction,
    decode_signed_transaction,
    encode_signed_transaction,
    signing_digest,
    to_hex,
)

__all__ = [
    "Signature",
    "SignedTransaction",
    "SignRequest",
    "UnsignedTransaction",
    "build_transaction",
    "decode_der_signature",
    "decode_signed_transaction",
    "derive_address",
    "eip155_v",
    "encode_signed_transaction",
    "enforce_low_s",
    "find_recovery_id",
    "keccak256",
    "normalize_address",
    "pad32",
    "public_key_from_der",
    "signing_digest",
    "to_hex",
]
