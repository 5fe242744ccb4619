"""Custody backend factory.

Creates the custody backend based on configuration. There is no local-key
backend: the gateway never holds private keys.
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from kmsgate.config import get_settings
from kmsgate.signing.base import CustodyBackend, CustodyType

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_custody_type() -> CustodyType:
    """Determine which custody backend to use.

    CUSTODY_BACKEND selects it explicitly; KMS is the only backend today.

    Raises:
        ValueError: If CUSTODY_BACKEND names an unknown backend
    """
    explicit = os.environ.get("CUSTODY_BACKEND", "").lower()
    if not explicit:
        return CustodyType.KMS
    try:
        return CustodyType(explicit)
    except ValueError:
        raise ValueError(f"Unknown custody backend: {explicit}")


_backend_instance: Optional[CustodyBackend] = None


def get_custody_backend() -> CustodyBackend:
    """Get the configured custody backend (singleton)."""
    global _backend_instance

    if _backend_instance is not None:
        return _backend_instance

    custody_type = get_custody_type()
    logger.info(f"Initializing {custody_type.value} custody backend")

    if custody_type == CustodyType.KMS:
        from kmsgate.signing.kms import KMSCustody
        _backend_instance = KMSCustody(get_settings())

    return _backend_instance


def reset_custody_backend():
    """Reset the backend instance (for testing)."""
    global _backend_instance
    _backend_instance = None
    get_custody_type.cache_clear()
