"""Key custody services.

Provides the custody boundary:
- CustodyBackend: create key / fetch public key / sign digest
- KMSCustody: AWS KMS-backed implementation
- with_retry: caller-level backoff for transient failures
"""

from kmsgate.signing.base import (
    KEY_SPEC_SECP256K1,
    SIGNING_ALGORITHM_ECDSA_SHA_256,
    CustodyBackend,
    CustodyType,
)
from kmsgate.signing.factory import get_custody_backend
from kmsgate.signing.retry import with_retry

__all__ = [
    "KEY_SPEC_SECP256K1",
    "SIGNING_ALGORITHM_ECDSA_SHA_256",
    "CustodyBackend",
    "CustodyType",
    "get_custody_backend",
    "with_retry",
]
