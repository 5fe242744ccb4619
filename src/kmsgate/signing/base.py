"""Base interface for the key custody service.

Custody flow:
1. create_key() asks the service for a new secp256k1 signing key
2. get_public_key() returns its DER SubjectPublicKeyInfo
3. sign_digest() signs a 32-byte digest and returns a DER ECDSA signature

Private keys never leave the service. Implementations only move key ids,
public keys and signatures across the boundary.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

KEY_USAGE_SIGN_VERIFY = "SIGN_VERIFY"
KEY_SPEC_SECP256K1 = "ECC_SECG_P256K1"
SIGNING_ALGORITHM_ECDSA_SHA_256 = "ECDSA_SHA_256"
DEFAULT_KEY_DESCRIPTION = "Wallet key"
DIGEST_LENGTH = 32


class CustodyType(str, Enum):
    """Type of custody backend."""
    KMS = "kms"           # AWS KMS


class CustodyBackend(ABC):
    """Abstract base class for custody backends.

    Every operation takes an optional ``timeout`` in seconds. None means the
    backend default. Errors surface as kmsgate.errors.CustodyServiceError
    subclasses; backends never retry on their own.
    """

    def __init__(self, custody_type: CustodyType):
        self.custody_type = custody_type

    @abstractmethod
    async def create_key(
        self,
        description: str = DEFAULT_KEY_DESCRIPTION,
        timeout: Optional[float] = None,
    ) -> str:
        """Create an asymmetric secp256k1 signing key.

        Returns:
            Key handle usable in the other calls
        """
        pass

    @abstractmethod
    async def get_public_key(self, key_id: str, timeout: Optional[float] = None) -> bytes:
        """Fetch the DER-encoded public key for a key handle."""
        pass

    @abstractmethod
    async def sign_digest(
        self,
        key_id: str,
        digest: bytes,
        algorithm: str = SIGNING_ALGORITHM_ECDSA_SHA_256,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Sign a 32-byte digest.

        Returns:
            DER-encoded SEQUENCE{INTEGER r, INTEGER s}
        """
        pass

    async def health_check(self) -> bool:
        """Check if the custody service is reachable."""
        return True

    async def close(self) -> None:
        """Release pooled resources."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.custody_type.value})"
